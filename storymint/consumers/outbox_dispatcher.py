import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from storymint.chain.client import ChainClient, HttpChainClient
from storymint.consumers.mint_saga import MintSaga
from storymint.core.config import (
    MAINTENANCE_INTERVAL,
    MAX_RETRIES,
    OUTBOX_VISIBILITY_TIMEOUT,
    POLLING_INTERVAL,
    ROYALTY_RECONCILE_AFTER,
)
from storymint.core.db import ConnectionManager
from storymint.core.errors import ErrorKind, ServiceError, is_retryable
from storymint.events import outbox_store
from storymint.events.outbox_store import MINT_REQUESTED
from storymint.models.outbox import OutboxEvent
from storymint.services import royalty_service

log = logging.getLogger("storymint.dispatcher")

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


class OutboxDispatcher:
    """
    Single sequential worker: claim one pending event, route it to its
    handler, then mark it completed or record the failure. Several
    dispatcher processes may share one database; the atomic claim keeps them
    from ever working on the same event.
    """

    def __init__(
        self,
        db: ConnectionManager,
        handlers: Dict[str, Handler],
        poll_interval: float = POLLING_INTERVAL,
        max_retries: int = MAX_RETRIES,
        maintenance_interval: float = MAINTENANCE_INTERVAL,
        visibility_timeout: float = OUTBOX_VISIBILITY_TIMEOUT,
        reconcile_after: float = ROYALTY_RECONCILE_AFTER,
    ):
        self.db = db
        self.handlers = handlers
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.maintenance_interval = maintenance_interval
        self.visibility_timeout = visibility_timeout
        self.reconcile_after = reconcile_after

        self._stop_event = asyncio.Event()
        self._stopped = asyncio.Event()
        self._running = False
        self._last_maintenance: Optional[float] = None

    async def dispatch(self, event: OutboxEvent) -> None:
        """Routes an OutboxEvent to the handler registered for its type."""
        handler = self.handlers.get(event.event_type)
        if handler is None:
            raise ServiceError(ErrorKind.VALIDATION, f"No handler found for event type: {event.event_type}")
        await handler(event.payload)

    async def run_once(self) -> bool:
        """
        Processes at most one event. Returns False when the outbox had nothing
        pending. Handler errors are recorded on the event, never raised.
        """
        await self.db.connect()

        event = await outbox_store.claim_next()
        if event is None:
            return False

        log.info(f"Dispatcher DISPATCHING: {event.event_type} (ID: {event.id}, attempt {event.attempts + 1}/{self.max_retries})")
        try:
            await self.dispatch(event)
        except Exception as e:
            if isinstance(e, ServiceError):
                log.warning(f"Event {event.id} ({event.event_type}) attempt {event.attempts + 1} failed [{e.kind.name}]: {e.message}")
            else:
                log.exception(f"Event {event.id} ({event.event_type}) attempt {event.attempts + 1} raised")
            await outbox_store.fail(event, e, retryable=is_retryable(e), max_retries=self.max_retries)
            return True

        if await outbox_store.complete(event):
            log.info(f"Event {event.id} ({event.event_type}) completed")
        return True

    async def run_maintenance(self) -> Dict[str, int]:
        """Requeues expired claims and re-settles stale royalty transactions."""
        requeued = await outbox_store.requeue_stale(
            timedelta(seconds=self.visibility_timeout), max_retries=self.max_retries
        )
        reconciled = await royalty_service.reconcile_stale_transactions(timedelta(seconds=self.reconcile_after))
        result = {"requeued_events": requeued, **reconciled}
        if any(result.values()):
            log.info(f"Maintenance sweep: {result}")
        return result

    async def _maybe_run_maintenance(self) -> None:
        now = time.monotonic()
        if self._last_maintenance is not None and now - self._last_maintenance < self.maintenance_interval:
            return
        self._last_maintenance = now
        await self.run_maintenance()

    async def run(self) -> None:
        """Main loop. Only stop() ends it; errors are logged per iteration."""
        self._running = True
        self._stopped.clear()
        log.info("--- Outbox Dispatcher Started ---")
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_once()
                    await self._maybe_run_maintenance()
                except Exception as e:
                    log.error(f"Dispatcher loop error: {e}")

                await self._sleep(self.poll_interval)
        finally:
            self._running = False
            self._stopped.set()
            log.info("--- Outbox Dispatcher Stopped ---")

    async def _sleep(self, seconds: float) -> None:
        # Wakes early when stop() is called
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self._stop_event.set()

    async def drain(self) -> None:
        """Stops the loop and waits for the in-flight iteration to finish."""
        self.stop()
        if self._running:
            await self._stopped.wait()


def build_handlers(chain_client: ChainClient) -> Dict[str, Handler]:
    saga = MintSaga(chain_client)
    return {MINT_REQUESTED: saga.handle}


async def start_outbox_dispatcher(db: Optional[ConnectionManager] = None, chain_client: Optional[ChainClient] = None) -> None:
    db = db or ConnectionManager(generate_schemas=True)
    dispatcher = OutboxDispatcher(db, build_handlers(chain_client or HttpChainClient()))
    db.install_shutdown_handlers(on_shutdown=dispatcher.drain)
    try:
        await dispatcher.run()
    finally:
        await db.close()


def run() -> None:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(start_outbox_dispatcher())
    except KeyboardInterrupt:
        log.info("Dispatcher service stopped.")


if __name__ == "__main__":
    run()
