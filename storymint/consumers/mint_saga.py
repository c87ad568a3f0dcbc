import logging
from datetime import datetime, timezone
from typing import Any, Dict

from storymint.chain.client import ChainClient, TxStatus
from storymint.core.errors import ErrorKind, ServiceError, validation_error
from storymint.models.mint_intent import MINT_TRANSITIONS, MintIntent, MintStatus, mint_intent_id
from storymint.models.story import Story, StoryStatus

log = logging.getLogger("storymint.mint_saga")

REQUIRED_FIELDS = ("story_id", "author_wallet", "metadata_uri")


class MintSaga:
    """
    Drives one story from 'mint requested' to 'minted' across the chain.

    Progress is persisted on the story's MintIntent after every step, so a
    run that dies anywhere can simply be run again: it reads the intent's
    status and resumes at the matching step. Each step is a no-op once
    satisfied, which is what makes replays of the same MintRequested event
    safe.

        pending --submit--> submitted --confirmed--> confirmed --> Story.minted
                                      \\--reverted--> failed (terminal)
    """

    def __init__(self, chain_client: ChainClient):
        self.chain = chain_client

    async def handle(self, payload: Dict[str, Any]) -> MintIntent:
        missing = [name for name in REQUIRED_FIELDS if not payload.get(name)]
        if missing:
            raise validation_error(f"MintRequested payload missing: {', '.join(missing)}")

        story_id = str(payload["story_id"])
        intent = await self._load_intent(story_id, payload["author_wallet"])
        log.info(f"--- Saga: {intent.intent_id} resuming from {intent.status.value} ---")

        if intent.status == MintStatus.FAILED:
            raise ServiceError(
                ErrorKind.ON_CHAIN_REVERTED,
                f"Mint intent {intent.intent_id} already failed: {intent.last_error}",
                details={"intent_id": intent.intent_id, "tx_hash": intent.tx_hash},
            )

        if intent.status == MintStatus.PENDING:
            intent = await self._submit(intent, payload["metadata_uri"])

        if intent.status == MintStatus.SUBMITTED:
            intent = await self._await_confirmation(intent)

        if intent.status == MintStatus.CONFIRMED:
            await self._project_onto_story(intent)

        return intent

    async def _load_intent(self, story_id: str, author_wallet: str) -> MintIntent:
        intent, created = await MintIntent.get_or_create(
            intent_id=mint_intent_id(story_id),
            defaults={"story_id": story_id, "author_wallet": author_wallet, "status": MintStatus.PENDING},
        )
        if created:
            log.info(f"Created mint intent {intent.intent_id}")
        return intent

    async def _advance(self, intent: MintIntent, new_status: MintStatus, **changes) -> MintIntent:
        """
        Moves the intent forward. The UPDATE is conditioned on the status we
        read, so a concurrent run that already advanced it makes this one fail
        (and retry from the newer state) instead of overwriting it.
        """
        if new_status not in MINT_TRANSITIONS[intent.status]:
            raise ServiceError(
                ErrorKind.INTERNAL,
                f"Illegal mint transition {intent.status.value} -> {new_status.value}",
            )

        updated = await MintIntent.filter(id=intent.id, status=intent.status).update(
            status=new_status, updated_at=datetime.now(timezone.utc), **changes
        )
        if not updated:
            raise ServiceError(
                ErrorKind.TRANSIENT,
                f"Mint intent {intent.intent_id} changed concurrently, will retry",
            )

        log.info(f"Saga: {intent.intent_id} {intent.status.value} -> {new_status.value}")
        return await MintIntent.get(id=intent.id)

    async def _submit(self, intent: MintIntent, metadata_uri: str) -> MintIntent:
        try:
            tx_hash = await self.chain.submit_mint(intent.author_wallet, metadata_uri)
        except ServiceError:
            raise
        except Exception as e:
            raise ServiceError(ErrorKind.TRANSIENT, f"Mint submission failed: {e}") from e

        # Persist before anything else so a crash here never re-submits
        return await self._advance(intent, MintStatus.SUBMITTED, tx_hash=tx_hash)

    async def _await_confirmation(self, intent: MintIntent) -> MintIntent:
        try:
            receipt = await self.chain.check_tx_status(intent.tx_hash)
        except ServiceError:
            raise
        except Exception as e:
            raise ServiceError(ErrorKind.TRANSIENT, f"Status check for {intent.tx_hash} failed: {e}") from e

        if receipt.status == TxStatus.CONFIRMED.value:
            return await self._advance(intent, MintStatus.CONFIRMED, token_id=receipt.token_id)

        if receipt.status == TxStatus.REVERTED.value:
            reason = "Transaction reverted on chain"
            await self._advance(intent, MintStatus.FAILED, last_error=reason)
            raise ServiceError(
                ErrorKind.ON_CHAIN_REVERTED,
                f"{reason}: {intent.tx_hash}",
                details={"intent_id": intent.intent_id, "tx_hash": intent.tx_hash},
            )

        raise ServiceError(
            ErrorKind.TRANSIENT,
            f"Transaction still pending (status: {receipt.status}), will retry",
        )

    async def _project_onto_story(self, intent: MintIntent) -> None:
        story = await Story.get_or_none(id=intent.story_id)
        if story is None:
            reason = f"Story {intent.story_id} not found; minted token {intent.token_id} not projected"
            log.warning(reason)
            await MintIntent.filter(id=intent.id).update(last_error=reason)
            raise ServiceError(ErrorKind.TRANSIENT, reason, details={"intent_id": intent.intent_id})

        if (
            story.status == StoryStatus.MINTED
            and story.nft_token_id == intent.token_id
            and story.nft_tx_hash == intent.tx_hash
        ):
            return

        story.status = StoryStatus.MINTED
        story.nft_token_id = intent.token_id
        story.nft_tx_hash = intent.tx_hash
        await story.save(update_fields=["status", "nft_token_id", "nft_tx_hash", "updated_at"])
        if intent.last_error:
            await MintIntent.filter(id=intent.id).update(last_error=None)
        log.info(f"SUCCESS: Story {story.id} minted as token {intent.token_id}")
