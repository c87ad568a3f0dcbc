import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from tortoise.expressions import F

from storymint.core.config import MAX_RETRIES
from storymint.models.outbox import OutboxEvent, OutboxStatus

log = logging.getLogger("storymint.outbox")

MINT_REQUESTED = "MintRequested"

# Cap on how many times claim_next re-reads after losing a race to another dispatcher
_CLAIM_RACE_LIMIT = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def enqueue(event_type: str, payload: Dict[str, Any], conn: Any = None) -> OutboxEvent:
    """
    Appends a pending event. Never waits on downstream processing.

    Passing 'conn' writes the event in the caller's transaction, so the event
    exists if and only if the business change it describes was committed.
    """
    event = await OutboxEvent.create(
        event_type=event_type,
        payload=payload,
        status=OutboxStatus.PENDING,
        attempts=0,
        using_db=conn,
    )
    log.info(f"Outbox enqueued {event_type} (ID: {event.id})")
    return event


async def claim_next() -> Optional[OutboxEvent]:
    """
    Claims the oldest pending event by moving it to 'processing'.

    The claim is a compare-and-swap: the UPDATE only matches while the row is
    still pending, so when two dispatchers race for the same row exactly one
    sees an affected row count of 1. The loser moves on to the next candidate.
    """
    for _ in range(_CLAIM_RACE_LIMIT):
        candidate = await OutboxEvent.filter(status=OutboxStatus.PENDING).order_by("created_at", "id").first()
        if candidate is None:
            return None

        claimed = await OutboxEvent.filter(id=candidate.id, status=OutboxStatus.PENDING).update(
            status=OutboxStatus.PROCESSING,
            processed_at=_now(),
        )
        if claimed:
            return await OutboxEvent.get(id=candidate.id)

        log.debug(f"Lost claim race for event {candidate.id}, retrying")
    return None


def _held(event: OutboxEvent):
    """
    Rows still held by this claim. Every path that takes a claim away
    (fail, requeue_stale) bumps attempts, so status plus the attempts value
    seen at claim time identify one claim and never a later one.
    """
    return OutboxEvent.filter(id=event.id, status=OutboxStatus.PROCESSING, attempts=event.attempts)


async def complete(event: OutboxEvent) -> bool:
    """Marks a claimed event completed. Returns False if the claim was lost meanwhile."""
    updated = await _held(event).update(status=OutboxStatus.COMPLETED)
    if not updated:
        log.warning(f"Outbox event {event.id} claim lost before completion, result discarded")
        return False
    return True


async def fail(
    event: OutboxEvent,
    error: BaseException,
    retryable: bool = True,
    max_retries: int = MAX_RETRIES,
) -> Optional[OutboxStatus]:
    """
    Records a failed attempt on a claimed event. The event goes back to
    'pending' for a later poll, or to terminal 'failed' once attempts reach
    max_retries or the error cannot be fixed by retrying. Returns the
    resulting status, or None if the claim was lost and nothing was written.
    """
    attempts = event.attempts + 1
    status = OutboxStatus.FAILED if (not retryable or attempts >= max_retries) else OutboxStatus.PENDING

    updated = await _held(event).update(
        status=status,
        attempts=F("attempts") + 1,
        last_error=str(error) or error.__class__.__name__,
    )
    if not updated:
        log.warning(f"Outbox event {event.id} claim lost before failure was recorded: {error}")
        return None

    if status == OutboxStatus.FAILED:
        log.error(f"Outbox event {event.id} FAILED permanently after {attempts} attempt(s): {error}")
    else:
        log.warning(f"Outbox event {event.id} attempt {attempts}/{max_retries} failed, requeued: {error}")
    return status


async def get_event(event_id: int) -> Optional[OutboxEvent]:
    return await OutboxEvent.get_or_none(id=event_id)


async def requeue_stale(older_than: timedelta, max_retries: int = MAX_RETRIES) -> int:
    """
    Returns events stuck in 'processing' (their dispatcher died mid-flight)
    to 'pending'. Each requeue counts as an attempt, so a poison event that
    keeps crashing its worker still ends in 'failed', and the bump fences
    off the expired claim holder.
    """
    cutoff = _now() - older_than
    stale = await OutboxEvent.filter(status=OutboxStatus.PROCESSING, processed_at__lt=cutoff)

    requeued = 0
    for event in stale:
        status = OutboxStatus.FAILED if event.attempts + 1 >= max_retries else OutboxStatus.PENDING
        # A dispatcher that finishes meanwhile wins
        updated = await _held(event).update(
            status=status,
            attempts=F("attempts") + 1,
            last_error="Claim expired before the event was completed",
        )
        if updated:
            requeued += 1
            log.warning(f"Outbox event {event.id} claim expired, moved to {status.value}")
    return requeued
