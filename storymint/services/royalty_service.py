import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from storymint.core.config import MAX_ROYALTY_PERCENTAGE
from storymint.core.errors import not_found, validation_error
from storymint.models.royalty import (
    CreatorEarnings,
    RoyaltyConfig,
    RoyaltyTransaction,
    RoyaltyTransactionStatus,
)

log = logging.getLogger("storymint.royalty")

WALLET_REGEX = re.compile(r"0x[a-fA-F0-9]{40}")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def is_valid_wallet(address: Any) -> bool:
    return isinstance(address, str) and WALLET_REGEX.fullmatch(address) is not None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _require_wallet(address: Any, message: str = "Invalid wallet address") -> str:
    if not is_valid_wallet(address):
        raise validation_error(message)
    return address.lower()


# ── Configure Royalty ──────────────────────────────────────────────

async def configure_royalty(
    creator_wallet: str,
    royalty_percentage: float,
    nft_id: Optional[str] = None,
    story_id: Optional[str] = None,
) -> RoyaltyConfig:
    """
    Creates or updates the royalty policy of one asset. Keyed on the single
    asset reference, so calling it again updates instead of duplicating.
    """
    wallet = _require_wallet(creator_wallet, "Invalid creator wallet address")

    if not _is_number(royalty_percentage) or not 0 <= royalty_percentage <= MAX_ROYALTY_PERCENTAGE:
        raise validation_error(f"Royalty percentage must be between 0 and {MAX_ROYALTY_PERCENTAGE}")

    if not nft_id and not story_id:
        raise validation_error("Either nftId or storyId is required")
    if nft_id and story_id:
        raise validation_error("Provide either nftId or storyId, not both")

    reference = {"nft_id": nft_id} if nft_id else {"story_id": story_id}

    config, created = await RoyaltyConfig.update_or_create(
        defaults={
            "creator_wallet": wallet,
            "royalty_percentage": float(royalty_percentage),
            "is_active": True,
        },
        **reference,
    )
    log.info(f"Royalty config {'created' if created else 'updated'} for {reference}: {royalty_percentage}% to {wallet}")
    return config


# ── Record Royalty Transaction ─────────────────────────────────────

async def _increment_earnings(conn: Any, creator_wallet: str, royalty_amount: float) -> None:
    # Atomic in-database increments; the aggregate is never read-modified-written here
    await CreatorEarnings.get_or_create(creator_wallet=creator_wallet, using_db=conn)
    await CreatorEarnings.filter(creator_wallet=creator_wallet).using_db(conn).update(
        total_earned=F("total_earned") + royalty_amount,
        pending_payout=F("pending_payout") + royalty_amount,
        total_sales=F("total_sales") + 1,
        last_updated=datetime.now(timezone.utc),
    )


async def _settle(transaction: RoyaltyTransaction) -> bool:
    """
    Completes a pending transaction and credits the creator in one DB
    transaction. A row that is still 'pending' has therefore never touched
    the aggregate. Returns False if the row was no longer pending.
    """
    async with in_transaction() as conn:
        flipped = await RoyaltyTransaction.filter(
            id=transaction.id, status=RoyaltyTransactionStatus.PENDING
        ).using_db(conn).update(status=RoyaltyTransactionStatus.COMPLETED)
        if not flipped:
            return False
        await _increment_earnings(conn, transaction.creator_wallet, transaction.royalty_amount)
    return True


async def _mark_failed(transaction_id: int) -> None:
    await RoyaltyTransaction.filter(
        id=transaction_id, status=RoyaltyTransactionStatus.PENDING
    ).update(status=RoyaltyTransactionStatus.FAILED)


async def record_royalty_transaction(
    nft_id: str,
    sale_price: float,
    seller_wallet: str,
    buyer_wallet: str,
    tx_hash: Optional[str] = None,
) -> RoyaltyTransaction:
    """
    Records one secondary sale and credits the creator exactly once.

    1. insert the transaction as 'pending' (evidence first)
    2. credit the creator's aggregate and flip the row to 'completed', atomically
    3. if step 2 raises, flip the row to 'failed' and re-raise
    """
    if not nft_id:
        raise validation_error("nftId is required")

    if not _is_number(sale_price) or sale_price <= 0:
        raise validation_error("Sale price must be greater than 0")

    if not is_valid_wallet(seller_wallet) or not is_valid_wallet(buyer_wallet):
        raise validation_error("Invalid wallet address")

    config = await RoyaltyConfig.get_or_none(nft_id=nft_id, is_active=True)
    if config is None:
        raise not_found("No active royalty configuration found for this NFT")

    royalty_amount = sale_price * (config.royalty_percentage / 100)

    # Step 1: Create transaction as pending
    transaction = await RoyaltyTransaction.create(
        nft_id=nft_id,
        sale_price=float(sale_price),
        royalty_amount=royalty_amount,
        royalty_percentage=config.royalty_percentage,
        seller_wallet=seller_wallet.lower(),
        buyer_wallet=buyer_wallet.lower(),
        creator_wallet=config.creator_wallet,
        tx_hash=tx_hash,
        status=RoyaltyTransactionStatus.PENDING,
    )

    # Steps 2 + 3: Credit creator and complete, or mark failed
    try:
        await _settle(transaction)
    except Exception as e:
        log.error(f"Crediting {config.creator_wallet} for royalty transaction {transaction.id} failed: {e}")
        await _mark_failed(transaction.id)
        raise

    log.info(f"Royalty transaction {transaction.id}: {royalty_amount} to {config.creator_wallet} for NFT {nft_id}")
    return await RoyaltyTransaction.get(id=transaction.id)


# ── Reconciliation ─────────────────────────────────────────────────

async def reconcile_stale_transactions(older_than: timedelta) -> Dict[str, int]:
    """
    Settles transactions left 'pending' by a crash between insert and
    settlement. A row that cannot be settled is marked 'failed' so the sweep
    never loops on it.
    """
    cutoff = datetime.now(timezone.utc) - older_than
    stale = await RoyaltyTransaction.filter(
        status=RoyaltyTransactionStatus.PENDING, created_at__lt=cutoff
    ).order_by("created_at", "id")

    settled = failed = 0
    for transaction in stale:
        try:
            if await _settle(transaction):
                settled += 1
                log.warning(f"Reconciled stale royalty transaction {transaction.id}")
        except Exception as e:
            log.error(f"Could not reconcile royalty transaction {transaction.id}: {e}")
            await _mark_failed(transaction.id)
            failed += 1

    return {"settled_transactions": settled, "failed_transactions": failed}


# ── Queries ────────────────────────────────────────────────────────

async def get_creator_earnings(wallet_address: str) -> CreatorEarnings:
    """Returns the creator's aggregate, or an unsaved all-zero record if none exists yet."""
    wallet = _require_wallet(wallet_address)

    earnings = await CreatorEarnings.get_or_none(creator_wallet=wallet)
    if earnings is None:
        earnings = CreatorEarnings(
            creator_wallet=wallet,
            total_earned=0,
            pending_payout=0,
            paid_out=0,
            total_sales=0,
            last_updated=None,
        )
    return earnings


def _page_bounds(page: Optional[int], limit: Optional[int]) -> "tuple[int, int]":
    page = max(1, int(page or 1))
    limit = min(MAX_PAGE_SIZE, max(1, int(limit or DEFAULT_PAGE_SIZE)))
    return page, limit


async def get_creator_transactions(
    wallet_address: str,
    page: Optional[int] = 1,
    limit: Optional[int] = DEFAULT_PAGE_SIZE,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    wallet = _require_wallet(wallet_address)
    page, limit = _page_bounds(page, limit)

    query = RoyaltyTransaction.filter(creator_wallet=wallet)
    if status:
        try:
            query = query.filter(status=RoyaltyTransactionStatus(status))
        except ValueError:
            raise validation_error("Invalid status. Must be pending, completed, or failed")

    total = await query.count()
    transactions = await query.order_by("-created_at", "-id").offset((page - 1) * limit).limit(limit)

    return {
        "transactions": transactions,
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) or 1,
        "limit": limit,
    }


async def get_royalty_config(
    nft_id: Optional[str] = None,
    story_id: Optional[str] = None,
    creator_wallet: Optional[str] = None,
) -> Union[Optional[RoyaltyConfig], List[RoyaltyConfig]]:
    """Single config when filtering by an asset reference, a list for a wallet alone."""
    filters: Dict[str, Any] = {}
    if nft_id:
        filters["nft_id"] = nft_id
    if story_id:
        filters["story_id"] = story_id
    if creator_wallet:
        filters["creator_wallet"] = _require_wallet(creator_wallet)

    if not filters:
        raise validation_error("At least one filter parameter is required")

    if nft_id or story_id:
        return await RoyaltyConfig.filter(**filters).first()
    return await RoyaltyConfig.filter(**filters).order_by("-updated_at")
