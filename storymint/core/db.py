import asyncio
import inspect
import logging
import re
import signal
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tortoise import Tortoise, connections
from tortoise.backends.base.client import BaseDBAsyncClient

from storymint.core.config import DB_URL, DB_MAX_RETRIES, DB_RETRY_DELAY_MS, MODELS_MODULES
from storymint.core.errors import ErrorKind, ServiceError

# Set logging level for Tortoise ORM
logging.getLogger('tortoise').setLevel(logging.INFO)
log = logging.getLogger("storymint.db")


def sanitize_url(url: str) -> str:
    """Masks credentials so the URL can be logged."""
    return re.sub(r"//[^@/]+@", "//*****:*****@", url)


class ConnectionManager:
    """
    Owns the single shared database connection of a process.

    Built once at startup and handed to every component that needs the
    database. Connecting retries with exponential backoff, verifies each new
    connection with a ping, and never lets two connection attempts run at
    the same time: concurrent callers await the same in-flight attempt.
    """

    def __init__(
        self,
        db_url: str = DB_URL,
        modules: Optional[List[str]] = None,
        max_retries: int = DB_MAX_RETRIES,
        retry_delay: float = DB_RETRY_DELAY_MS / 1000,
        generate_schemas: bool = False,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.db_url = db_url
        self.modules = modules or MODELS_MODULES
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.generate_schemas = generate_schemas

        self._client: Optional[BaseDBAsyncClient] = None
        self.is_connected = False
        self.last_error: Optional[str] = None
        self.connection_attempts = 0
        self.last_connection_time: Optional[datetime] = None

        self._connecting: Optional[asyncio.Future] = None
        self._shutdown_installed = False
        self._shutdown_task: Optional[asyncio.Task] = None

    @property
    def connection(self) -> Optional[BaseDBAsyncClient]:
        return self._client

    def state(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "last_error": self.last_error,
            "connection_attempts": self.connection_attempts,
            "last_connection_time": self.last_connection_time.isoformat() if self.last_connection_time else None,
        }

    async def connect(self, max_retries: Optional[int] = None) -> BaseDBAsyncClient:
        """
        Returns the live connection, establishing it first if needed.
        `max_retries` overrides the configured attempt count for a new
        attempt; callers joining one already in flight share its count.
        """
        if self._client is not None and self.is_connected:
            return self._client

        # Join the attempt already in flight instead of starting another one
        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._connect_with_retry(max_retries or self.max_retries))
            self._connecting.add_done_callback(self._clear_connecting)

        return await asyncio.shield(self._connecting)

    def _clear_connecting(self, future: asyncio.Future) -> None:
        if self._connecting is future:
            self._connecting = None

    async def _connect_with_retry(self, max_retries: int) -> BaseDBAsyncClient:
        safe_url = sanitize_url(self.db_url)
        last_exc: Optional[BaseException] = None

        for attempt in range(1, max_retries + 1):
            self.connection_attempts = attempt
            log.info(f"Connection attempt {attempt}/{max_retries} to {safe_url}")
            try:
                client = await self._open()
                try:
                    await self._ping(client)
                except Exception:
                    # Never leak a half-open handle
                    await self._close()
                    raise

                if self.generate_schemas:
                    await Tortoise.generate_schemas(safe=True)

                self._client = client
                self.is_connected = True
                self.last_error = None
                self.last_connection_time = datetime.now(timezone.utc)
                log.info(f"Connected successfully on attempt {attempt}")
                return client

            except Exception as e:
                last_exc = e
                self.last_error = str(e) or e.__class__.__name__
                log.error(f"Attempt {attempt}/{max_retries} failed: {self.last_error}")

                if attempt == max_retries:
                    break

                delay = self.retry_delay * 2 ** (attempt - 1)
                log.info(f"Retrying in {delay * 1000:.0f}ms...")
                await asyncio.sleep(delay)

        log.error("Max retries reached. Failed to establish connection.")
        self.is_connected = False
        raise ServiceError(
            ErrorKind.TRANSIENT,
            f"Failed to connect to database after {max_retries} attempts: {self.last_error}",
            details={"attempts": max_retries, "last_error": self.last_error},
        ) from last_exc

    async def _open(self) -> BaseDBAsyncClient:
        await Tortoise.init(db_url=self.db_url, modules={"models": self.modules})
        return connections.get("default")

    async def _ping(self, client: BaseDBAsyncClient) -> None:
        await client.execute_query("SELECT 1")

    async def _close(self) -> None:
        await Tortoise.close_connections()

    async def measure_latency(self) -> Optional[float]:
        """
        Times a ping round trip in milliseconds. Returns None when there is no
        live connection; a failed ping marks the manager disconnected and
        disposes of the stale handle.
        """
        if self._client is None or not self.is_connected:
            return None

        start = time.perf_counter()
        try:
            await self._ping(self._client)
        except Exception as e:
            log.error(f"Error measuring latency: {e}")
            self.is_connected = False
            self.last_error = str(e) or "Ping failed"
            try:
                await self._close()
            except Exception as close_exc:
                log.warning(f"Ignoring error while disposing stale connection: {close_exc}")
            self._client = None
            return None

        return round((time.perf_counter() - start) * 1000, 2)

    async def close(self) -> None:
        """Closes the connection and resets state."""
        client, self._client = self._client, None
        if client is None:
            return
        self.is_connected = False
        try:
            await self._close()
        except Exception as e:
            log.error(f"Error closing connection: {e}")
            raise
        self.last_error = None
        self.connection_attempts = 0
        self.last_connection_time = None
        log.info("Connection closed gracefully")

    def install_shutdown_handlers(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_shutdown: Optional[Callable[[], Any]] = None,
    ) -> bool:
        """
        Registers SIGINT/SIGTERM handlers that run `on_shutdown` and then close
        the connection. Safe to call repeatedly; only the first call installs
        anything. Returns True when handlers were installed by this call.
        """
        if self._shutdown_installed:
            return False
        self._shutdown_installed = True

        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal, sig.name, on_shutdown)

        log.info("Graceful shutdown handlers registered")
        return True

    def _on_signal(self, sig_name: str, on_shutdown: Optional[Callable[[], Any]]) -> None:
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown(sig_name, on_shutdown))

    async def _shutdown(self, sig_name: str, on_shutdown: Optional[Callable[[], Any]]) -> None:
        log.info(f"{sig_name} received, shutting down gracefully...")
        try:
            if on_shutdown is not None:
                result = on_shutdown()
                if inspect.isawaitable(result):
                    await result
            await self.close()
            log.info("Cleanup completed")
        except Exception:
            log.exception("Error during shutdown")
