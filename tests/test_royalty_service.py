from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from storymint.core.errors import ErrorKind, ServiceError
from storymint.models.royalty import (
    CreatorEarnings,
    RoyaltyConfig,
    RoyaltyTransaction,
    RoyaltyTransactionStatus,
)
from storymint.services import royalty_service
from storymint.services.royalty_service import (
    configure_royalty,
    get_creator_earnings,
    get_creator_transactions,
    get_royalty_config,
    reconcile_stale_transactions,
    record_royalty_transaction,
)

from tests.conftest import BAD_WALLETS, BUYER, CREATOR, SELLER

pytestmark = pytest.mark.usefixtures("db")


async def record_sale(sale_price=1.0, nft_id="nft-1"):
    return await record_royalty_transaction(
        nft_id=nft_id, sale_price=sale_price, seller_wallet=SELLER, buyer_wallet=BUYER
    )


def assert_validation(exc_info, text=None):
    assert exc_info.value.kind == ErrorKind.VALIDATION
    if text:
        assert text in exc_info.value.message


class TestConfigureRoyalty:

    async def test_creates_config_with_lowercased_wallet(self):
        config = await configure_royalty(CREATOR.upper().replace("0X", "0x"), 5, nft_id="nft-1")

        assert config.nft_id == "nft-1"
        assert config.story_id is None
        assert config.creator_wallet == CREATOR
        assert config.royalty_percentage == 5
        assert config.is_active is True

    async def test_second_call_updates_instead_of_duplicating(self):
        await configure_royalty(CREATOR, 5, story_id="story-1")
        updated = await configure_royalty(CREATOR, 12.5, story_id="story-1")

        assert await RoyaltyConfig.filter(story_id="story-1").count() == 1
        assert updated.royalty_percentage == 12.5

    @pytest.mark.parametrize("percentage", [0, 0.5, 50])
    async def test_accepts_percentages_in_range(self, percentage):
        config = await configure_royalty(CREATOR, percentage, nft_id="nft-1")
        assert config.royalty_percentage == percentage

    @pytest.mark.parametrize("percentage", [-0.01, 50.01, 100, float("nan"), float("inf"), "5", None, True])
    async def test_rejects_out_of_range_percentages(self, percentage):
        with pytest.raises(ServiceError) as exc_info:
            await configure_royalty(CREATOR, percentage, nft_id="nft-1")
        assert_validation(exc_info, "between 0 and 50")
        assert await RoyaltyConfig.all().count() == 0

    @pytest.mark.parametrize("wallet", BAD_WALLETS)
    async def test_rejects_invalid_creator_wallet(self, wallet):
        with pytest.raises(ServiceError) as exc_info:
            await configure_royalty(wallet, 5, nft_id="nft-1")
        assert_validation(exc_info, "wallet")

    async def test_requires_exactly_one_reference(self):
        with pytest.raises(ServiceError) as none_given:
            await configure_royalty(CREATOR, 5)
        assert_validation(none_given, "Either nftId or storyId is required")

        with pytest.raises(ServiceError) as both_given:
            await configure_royalty(CREATOR, 5, nft_id="nft-1", story_id="story-1")
        assert_validation(both_given, "not both")


class TestRecordRoyaltyTransaction:

    async def test_sale_credits_creator_once(self):
        """5% of a 1 ETH sale is 0.05 ETH, credited to the creator as one sale."""
        await configure_royalty(CREATOR, 5, nft_id="nft-1")

        tx = await record_sale(1.0)

        assert tx.status == RoyaltyTransactionStatus.COMPLETED
        assert tx.royalty_amount == pytest.approx(0.05)
        assert tx.royalty_percentage == 5
        assert tx.creator_wallet == CREATOR
        assert tx.seller_wallet == SELLER
        earnings = await CreatorEarnings.get(creator_wallet=CREATOR)
        assert earnings.total_earned == pytest.approx(0.05)
        assert earnings.pending_payout == pytest.approx(0.05)
        assert earnings.paid_out == 0
        assert earnings.total_sales == 1
        assert earnings.last_updated is not None

    async def test_totals_accumulate_across_sales(self):
        await configure_royalty(CREATOR, 10, nft_id="nft-1")

        await record_sale(1.0)
        await record_sale(3.0)

        earnings = await CreatorEarnings.get(creator_wallet=CREATOR)
        assert earnings.total_earned == pytest.approx(0.4)
        assert earnings.total_sales == 2

    async def test_no_active_config_writes_nothing(self):
        with pytest.raises(ServiceError) as exc_info:
            await record_sale(1.0, nft_id="unknown-nft")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert "No active royalty configuration" in exc_info.value.message
        assert await RoyaltyTransaction.all().count() == 0
        assert await CreatorEarnings.all().count() == 0

    async def test_inactive_config_is_ignored(self):
        await configure_royalty(CREATOR, 5, nft_id="nft-1")
        await RoyaltyConfig.filter(nft_id="nft-1").update(is_active=False)

        with pytest.raises(ServiceError) as exc_info:
            await record_sale()
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("price", [0, -1, float("nan"), "1.0", None])
    async def test_rejects_non_positive_sale_price(self, price):
        await configure_royalty(CREATOR, 5, nft_id="nft-1")
        with pytest.raises(ServiceError) as exc_info:
            await record_sale(price)
        assert_validation(exc_info, "Sale price must be greater than 0")

    @pytest.mark.parametrize("wallet", BAD_WALLETS)
    async def test_rejects_invalid_counterparty_wallets(self, wallet):
        await configure_royalty(CREATOR, 5, nft_id="nft-1")
        for seller, buyer in ((wallet, BUYER), (SELLER, wallet)):
            with pytest.raises(ServiceError) as exc_info:
                await record_royalty_transaction("nft-1", 1.0, seller, buyer)
            assert_validation(exc_info, "Invalid wallet address")
        assert await RoyaltyTransaction.all().count() == 0

    async def test_requires_nft_id(self):
        with pytest.raises(ServiceError) as exc_info:
            await record_royalty_transaction("", 1.0, SELLER, BUYER)
        assert_validation(exc_info, "nftId is required")

    async def test_failed_credit_marks_transaction_failed(self):
        await configure_royalty(CREATOR, 5, nft_id="nft-1")

        with patch.object(royalty_service, "_increment_earnings", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(RuntimeError, match="db down"):
                await record_sale()

        tx = await RoyaltyTransaction.get(nft_id="nft-1")
        assert tx.status == RoyaltyTransactionStatus.FAILED
        assert await CreatorEarnings.all().count() == 0

    async def test_percentage_is_snapshotted_at_record_time(self):
        await configure_royalty(CREATOR, 5, nft_id="nft-1")
        tx = await record_sale(2.0)

        await configure_royalty(CREATOR, 20, nft_id="nft-1")

        stored = await RoyaltyTransaction.get(id=tx.id)
        assert stored.royalty_percentage == 5
        assert stored.royalty_amount == pytest.approx(0.1)


class TestReconciliation:

    async def _pending(self, minutes_old: int, amount: float = 0.1) -> RoyaltyTransaction:
        tx = await RoyaltyTransaction.create(
            nft_id="nft-1", sale_price=amount * 10, royalty_amount=amount, royalty_percentage=10,
            seller_wallet=SELLER, buyer_wallet=BUYER, creator_wallet=CREATOR,
        )
        await RoyaltyTransaction.filter(id=tx.id).update(
            created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_old)
        )
        return tx

    async def test_settles_stale_pending_rows_exactly_once(self):
        stale = await self._pending(minutes_old=30)
        fresh = await self._pending(minutes_old=0)

        assert await reconcile_stale_transactions(timedelta(minutes=10)) == {
            "settled_transactions": 1,
            "failed_transactions": 0,
        }
        assert await reconcile_stale_transactions(timedelta(minutes=10)) == {
            "settled_transactions": 0,
            "failed_transactions": 0,
        }

        assert (await RoyaltyTransaction.get(id=stale.id)).status == RoyaltyTransactionStatus.COMPLETED
        assert (await RoyaltyTransaction.get(id=fresh.id)).status == RoyaltyTransactionStatus.PENDING
        earnings = await CreatorEarnings.get(creator_wallet=CREATOR)
        assert earnings.total_sales == 1
        assert earnings.total_earned == pytest.approx(0.1)

    async def test_unsettleable_row_is_marked_failed(self):
        stale = await self._pending(minutes_old=30)

        with patch.object(royalty_service, "_increment_earnings", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await reconcile_stale_transactions(timedelta(minutes=10))

        assert result == {"settled_transactions": 0, "failed_transactions": 1}
        assert (await RoyaltyTransaction.get(id=stale.id)).status == RoyaltyTransactionStatus.FAILED


class TestQueries:

    async def test_earnings_for_unknown_creator_are_zero(self):
        earnings = await get_creator_earnings(CREATOR.upper().replace("0X", "0x"))

        assert earnings.creator_wallet == CREATOR
        assert earnings.total_earned == 0
        assert earnings.pending_payout == 0
        assert earnings.paid_out == 0
        assert earnings.total_sales == 0
        assert earnings.last_updated is None
        assert await CreatorEarnings.all().count() == 0

    @pytest.mark.parametrize("wallet", BAD_WALLETS)
    async def test_queries_reject_invalid_wallets(self, wallet):
        with pytest.raises(ServiceError) as earnings_exc:
            await get_creator_earnings(wallet)
        assert_validation(earnings_exc)

        with pytest.raises(ServiceError) as tx_exc:
            await get_creator_transactions(wallet)
        assert_validation(tx_exc)

    async def test_transactions_are_paginated_newest_first(self):
        await configure_royalty(CREATOR, 10, nft_id="nft-1")
        sales = [await record_sale(price) for price in (1.0, 2.0, 3.0)]

        page_one = await get_creator_transactions(CREATOR, page=1, limit=2)
        page_two = await get_creator_transactions(CREATOR, page=2, limit=2)

        assert [t.id for t in page_one["transactions"]] == [sales[2].id, sales[1].id]
        assert [t.id for t in page_two["transactions"]] == [sales[0].id]
        assert page_one["total"] == 3
        assert page_one["total_pages"] == 2
        assert page_one["limit"] == 2

    @pytest.mark.parametrize(
        "page, limit, expected",
        [(0, 0, (1, 10)), (None, None, (1, 10)), (-3, 5, (1, 5)), (2, 1000, (2, 100)), (1, -4, (1, 1))],
    )
    async def test_page_and_limit_are_clamped(self, page, limit, expected):
        result = await get_creator_transactions(CREATOR, page=page, limit=limit)
        assert (result["page"], result["limit"]) == expected
        assert result["total"] == 0
        assert result["total_pages"] == 1

    async def test_transactions_filter_by_status(self):
        await configure_royalty(CREATOR, 10, nft_id="nft-1")
        await record_sale()
        with patch.object(royalty_service, "_increment_earnings", AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(RuntimeError):
                await record_sale()

        failed = await get_creator_transactions(CREATOR, status="failed")
        completed = await get_creator_transactions(CREATOR, status="completed")

        assert failed["total"] == 1
        assert completed["total"] == 1

        with pytest.raises(ServiceError) as exc_info:
            await get_creator_transactions(CREATOR, status="refunded")
        assert_validation(exc_info, "Invalid status")

    async def test_royalty_config_lookup(self):
        await configure_royalty(CREATOR, 5, nft_id="nft-1")
        await configure_royalty(CREATOR, 7, story_id="story-1")

        by_nft = await get_royalty_config(nft_id="nft-1")
        by_wallet = await get_royalty_config(creator_wallet=CREATOR)

        assert by_nft.royalty_percentage == 5
        assert isinstance(by_wallet, list)
        assert len(by_wallet) == 2
        assert await get_royalty_config(nft_id="missing") is None

        with pytest.raises(ServiceError) as exc_info:
            await get_royalty_config()
        assert_validation(exc_info, "At least one filter parameter is required")
