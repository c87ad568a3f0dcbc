import pytest

from storymint.core.errors import ErrorKind, ServiceError
from storymint.events.outbox_store import MINT_REQUESTED
from storymint.models.mint_intent import MintIntent, MintStatus
from storymint.models.outbox import OutboxEvent, OutboxStatus
from storymint.models.story import StoryStatus
from storymint.services.mint_service import get_mint_status, request_mint

from tests.conftest import AUTHOR, BUYER


class TestRequestMint:

    async def test_queues_mint_requested_event(self, story):
        event = await request_mint("story-1", AUTHOR, "ipfs://meta/1")

        stored = await OutboxEvent.get(id=event.id)
        assert stored.event_type == MINT_REQUESTED
        assert stored.status == OutboxStatus.PENDING
        assert stored.payload == {
            "story_id": "story-1",
            "author_wallet": AUTHOR,
            "metadata_uri": "ipfs://meta/1",
        }

    async def test_unknown_story(self, db):
        with pytest.raises(ServiceError) as exc_info:
            await request_mint("missing", AUTHOR, "ipfs://meta/1")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert await OutboxEvent.all().count() == 0

    async def test_already_minted_story(self, story):
        story.status = StoryStatus.MINTED
        await story.save()

        with pytest.raises(ServiceError) as exc_info:
            await request_mint("story-1", AUTHOR, "ipfs://meta/1")
        assert exc_info.value.kind == ErrorKind.CONFLICT

    async def test_wallet_must_belong_to_author(self, story):
        with pytest.raises(ServiceError) as exc_info:
            await request_mint("story-1", BUYER, "ipfs://meta/1")
        assert exc_info.value.kind == ErrorKind.VALIDATION

    @pytest.mark.parametrize("wallet, uri", [("0x123", "ipfs://meta/1"), (AUTHOR, "")])
    async def test_rejects_bad_input_before_touching_the_db(self, db, wallet, uri):
        with pytest.raises(ServiceError) as exc_info:
            await request_mint("story-1", wallet, uri)
        assert exc_info.value.kind == ErrorKind.VALIDATION

    async def test_failed_intent_needs_explicit_retry(self, story):
        await MintIntent.create(
            intent_id="mint_story-1", story_id="story-1", author_wallet=AUTHOR,
            tx_hash="0xdead", status=MintStatus.FAILED, last_error="Transaction reverted on chain",
        )

        with pytest.raises(ServiceError) as exc_info:
            await request_mint("story-1", AUTHOR, "ipfs://meta/1")
        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert exc_info.value.details["txHash"] == "0xdead"
        assert await OutboxEvent.all().count() == 0

        await request_mint("story-1", AUTHOR, "ipfs://meta/1", retry_failed=True)

        intent = await MintIntent.get(intent_id="mint_story-1")
        assert intent.status == MintStatus.PENDING
        assert intent.tx_hash is None
        assert intent.last_error is None
        assert await OutboxEvent.all().count() == 1


class TestGetMintStatus:

    async def test_returns_intent(self, story):
        await MintIntent.create(intent_id="mint_story-1", story_id="story-1", author_wallet=AUTHOR)

        intent = await get_mint_status("story-1")
        assert intent.status == MintStatus.PENDING

    async def test_no_mint_requested(self, db):
        with pytest.raises(ServiceError) as exc_info:
            await get_mint_status("story-1")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
