"""PostgreSQL LISTEN/NOTIFY Transport - change feed shared by every process on one database.

Invariants:
    - One dedicated asyncpg connection per listen() (LISTEN is connection-scoped)
    - Connection loss surfaces as SubscriptionError from the stream; the client reconnects
    - Payloads are ChangeEvent JSON; undecodable payloads are logged and skipped
    - publish() uses pg_notify() so channel names need no quoting

Design Decisions:
    - asyncpg directly (not SQLAlchemy): LISTEN needs the raw driver connection
    - Publisher connection is lazy and shared; reopened after it is closed
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import asyncpg
from pydantic import ValidationError

from snakeoil.core.errors import SubscriptionError
from snakeoil.core.records import ChangeEvent

logger = logging.getLogger(__name__)

# NOTIFY payloads are capped at 8000 bytes by PostgreSQL
MAX_PAYLOAD_BYTES = 7900

_CLOSED = object()


def to_asyncpg_dsn(database_url: str) -> str:
    """SQLAlchemy URL -> plain libpq DSN accepted by asyncpg."""
    return database_url.replace("postgresql+asyncpg://", "postgresql://", 1)


class PostgresNotifyTransport:
    """Feed transport over PostgreSQL LISTEN/NOTIFY."""

    def __init__(self, dsn: str, connect_timeout: float = 10.0):
        self._dsn = to_asyncpg_dsn(dsn)
        self._connect_timeout = connect_timeout
        self._publisher: asyncpg.Connection | None = None
        self._publisher_lock = asyncio.Lock()

    async def _connect(self, channel: str) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
        except (
            OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError,
        ) as e:
            raise SubscriptionError(channel, f"connect failed: {e}") from e

    @asynccontextmanager
    async def listen(self, channel: str):
        conn = await self._connect(channel)
        queue: asyncio.Queue = asyncio.Queue()

        def on_notify(_conn, _pid, _channel, payload: str) -> None:
            try:
                queue.put_nowait(ChangeEvent.model_validate_json(payload))
            except ValidationError as e:
                logger.warning(
                    f"Dropping undecodable notification: {e}",
                    extra={"channel": channel},
                )

        def on_terminate(_conn) -> None:
            queue.put_nowait(_CLOSED)

        try:
            await conn.add_listener(channel, on_notify)
            conn.add_termination_listener(on_terminate)
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            await conn.close()
            raise SubscriptionError(channel, f"LISTEN failed: {e}") from e

        async def drain():
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    raise SubscriptionError(channel, "connection terminated")
                yield item

        try:
            yield drain()
        finally:
            if not conn.is_closed():
                try:
                    await conn.remove_listener(channel, on_notify)
                except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                    logger.warning(f"UNLISTEN failed: {e}", extra={"channel": channel})
                await conn.close()

    async def _publisher_conn(self, channel: str) -> asyncpg.Connection:
        async with self._publisher_lock:
            if self._publisher is None or self._publisher.is_closed():
                self._publisher = await self._connect(channel)
            return self._publisher

    async def publish(self, channel: str, event: ChangeEvent) -> None:
        payload = event.model_dump_json()
        if len(payload.encode()) > MAX_PAYLOAD_BYTES:
            logger.error(
                "Change event exceeds NOTIFY payload limit, not published",
                extra={"channel": channel, "table": event.table.value},
            )
            return
        conn = await self._publisher_conn(channel)
        try:
            await conn.execute("SELECT pg_notify($1, $2)", channel, payload)
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise SubscriptionError(channel, f"NOTIFY failed: {e}") from e

    async def close(self) -> None:
        if self._publisher is not None and not self._publisher.is_closed():
            await self._publisher.close()
        self._publisher = None
