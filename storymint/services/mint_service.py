import logging

from tortoise.transactions import in_transaction

from storymint.core.errors import ErrorKind, ServiceError, not_found, validation_error
from storymint.events.outbox_store import MINT_REQUESTED, enqueue
from storymint.models.mint_intent import MintIntent, MintStatus, mint_intent_id
from storymint.models.outbox import OutboxEvent
from storymint.models.story import Story, StoryStatus
from storymint.services.royalty_service import is_valid_wallet

log = logging.getLogger("storymint.mint_service")


async def request_mint(story_id: str, author_wallet: str, metadata_uri: str, retry_failed: bool = False) -> OutboxEvent:
    """
    FAST PATH: validates the request and queues a MintRequested event in the
    same DB transaction. The chain work itself happens in the dispatcher.
    """
    if not is_valid_wallet(author_wallet):
        raise validation_error("Invalid author wallet address")
    if not metadata_uri:
        raise validation_error("metadataUri is required")

    async with in_transaction() as conn:
        story = await Story.get_or_none(id=story_id).using_db(conn)
        if not story:
            raise not_found(f"Story {story_id} not found")

        if story.status == StoryStatus.MINTED:
            raise ServiceError(ErrorKind.CONFLICT, f"Story {story_id} is already minted")
        if story.author_wallet.lower() != author_wallet.lower():
            raise validation_error("authorWallet does not match the story author")

        intent = await MintIntent.get_or_none(intent_id=mint_intent_id(story_id)).using_db(conn)
        if intent is not None and intent.status == MintStatus.FAILED:
            if not retry_failed:
                raise ServiceError(
                    ErrorKind.CONFLICT,
                    "Previous mint attempt reverted on chain; resubmit with retryFailed to start a new attempt",
                    details={"intentId": intent.intent_id, "txHash": intent.tx_hash},
                )
            # Operator-initiated fresh attempt: the only way an intent moves backwards
            log.warning(f"Resetting failed mint intent {intent.intent_id} (reverted tx {intent.tx_hash})")
            intent.status = MintStatus.PENDING
            intent.tx_hash = None
            intent.last_error = None
            await intent.save(using_db=conn, update_fields=["status", "tx_hash", "last_error", "updated_at"])

        # Pending/submitted intents may be re-queued; the saga resumes rather than re-submits
        event = await enqueue(
            MINT_REQUESTED,
            {
                "story_id": story_id,
                "author_wallet": author_wallet,
                "metadata_uri": metadata_uri,
            },
            conn=conn,
        )

    log.info(f"Mint requested for story {story_id} (event {event.id})")
    return event


async def get_mint_status(story_id: str) -> MintIntent:
    intent = await MintIntent.get_or_none(intent_id=mint_intent_id(story_id))
    if intent is None:
        raise not_found(f"No mint has been requested for story {story_id}")
    return intent
