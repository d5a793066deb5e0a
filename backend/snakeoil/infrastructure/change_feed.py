"""Change Feed - per-session subscription over a pub/sub transport, with reconnect and backoff.

Invariants:
    - One logical subscription per ChangeFeedClient; subscribe() on an active client is rejected
    - Delivery is at-least-once and unordered: handlers must merge, never append blindly
    - Transport drops trigger reconnect with exponential backoff (±25% jitter)
    - After every re-establish, on_reconnect runs before streaming resumes
      (events missed during the gap are not replayed)
    - Exhausted retries call on_lost once and end the subscription
    - Any exception raised by the transport counts as a disconnect
    - subscribe() always returns or raises: the pump settles it on every exit path
    - A failing handler is logged and never stops the pump

Design Decisions:
    - FeedTransport as Protocol: InMemoryTransport (single process, default) and
      PostgresNotifyTransport (LISTEN/NOTIFY) are interchangeable
    - Pump runs as one asyncio task; unsubscribe() cancels it and awaits teardown
"""

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from snakeoil.core.domain_types import ChangeOperation, ChangeTable
from snakeoil.core.errors import SubscriptionError
from snakeoil.core.records import ChangeEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]


def channel_for(session_id: UUID) -> str:
    """Channel name for one session (valid as a PostgreSQL identifier)."""
    return f"game_session_{session_id.hex}"


class FeedTransport(Protocol):
    """Contract for pub/sub transports - implemented in infrastructure."""
    def listen(
        self, channel: str,
    ) -> AbstractAsyncContextManager[AsyncIterator[ChangeEvent]]: ...
    async def publish(self, channel: str, event: ChangeEvent) -> None: ...
    async def close(self) -> None: ...


# ─── In-memory transport ─────────────────────────────────────────

_DROP = object()


class InMemoryTransport:
    """asyncio broker for a single process. Every listener gets its own queue."""

    def __init__(self):
        self._listeners: dict[str, set[asyncio.Queue]] = {}

    @asynccontextmanager
    async def listen(self, channel: str):
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.setdefault(channel, set()).add(queue)
        try:
            yield self._drain(channel, queue)
        finally:
            listeners = self._listeners.get(channel)
            if listeners is not None:
                listeners.discard(queue)
                if not listeners:
                    del self._listeners[channel]

    async def _drain(
        self, channel: str, queue: asyncio.Queue,
    ) -> AsyncIterator[ChangeEvent]:
        while True:
            item = await queue.get()
            if item is _DROP:
                raise SubscriptionError(channel, "connection dropped")
            yield item

    async def publish(self, channel: str, event: ChangeEvent) -> None:
        for queue in list(self._listeners.get(channel, ())):
            queue.put_nowait(event)

    def drop_connections(self, channel: str) -> int:
        """Sever every listener on a channel (they reconnect on their own)."""
        listeners = list(self._listeners.get(channel, ()))
        for queue in listeners:
            queue.put_nowait(_DROP)
        return len(listeners)

    def listener_count(self, channel: str) -> int:
        return len(self._listeners.get(channel, ()))

    async def close(self) -> None:
        for channel in list(self._listeners):
            self.drop_connections(channel)


# ─── Client ──────────────────────────────────────────────────────

@dataclass
class FeedHandlers:
    """Callbacks for one subscription. All are awaited on the pump task."""
    on_session_change: EventHandler
    on_round_change: EventHandler
    on_chat_insert: EventHandler | None = None
    on_reconnect: Callable[[], Awaitable[None]] | None = None
    on_lost: Callable[[SubscriptionError], Awaitable[None]] | None = None


class ChangeFeedClient:
    """Owns the live subscription of one participant to one session."""

    def __init__(
        self,
        transport: FeedTransport,
        max_retries: int = 5,
        base_delay_ms: int = 250,
        max_delay_ms: int = 10_000,
    ):
        self._transport = transport
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._task: asyncio.Task | None = None
        self._channel: str | None = None
        self._handlers: FeedHandlers | None = None
        self._connected = asyncio.Event()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def connected(self) -> bool:
        return self.active and self._connected.is_set()

    async def subscribe(self, session_id: UUID, handlers: FeedHandlers) -> None:
        """Open the subscription and wait until the first connection is live.

        Raises SubscriptionError if the transport cannot be reached within
        the retry budget.
        """
        if self.active:
            raise SubscriptionError(
                self._channel or "", "client already has an active subscription",
            )
        self._channel = channel_for(session_id)
        self._handlers = handlers
        self._connected.clear()
        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(
            self._run(ready), name=f"feed:{self._channel}",
        )
        await ready

    async def unsubscribe(self) -> None:
        """Tear down the subscription. Safe to call more than once."""
        task, self._task = self._task, None
        self._connected.clear()
        if task is None:
            return
        if task is asyncio.current_task():
            # called from a handler on the pump task: cancellation lands at its next await
            task.cancel()
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Feed unsubscribed", extra={"channel": self._channel})

    async def _run(self, ready: asyncio.Future) -> None:
        try:
            await self._pump(ready)
        finally:
            self._connected.clear()
            if not ready.done():
                ready.set_exception(
                    SubscriptionError(self._channel, "feed stopped before connecting"),
                )

    async def _pump(self, ready: asyncio.Future) -> None:
        attempt = 0
        established_once = False
        while True:
            try:
                async with self._transport.listen(self._channel) as stream:
                    self._connected.set()
                    if established_once:
                        logger.info(
                            "Feed reconnected",
                            extra={"channel": self._channel, "attempt": attempt},
                        )
                        await self._call_reconnect()
                    else:
                        established_once = True
                        if not ready.done():
                            ready.set_result(None)
                    attempt = 0
                    async for event in stream:
                        await self._dispatch(event)
                raise SubscriptionError(self._channel, "stream closed by transport")
            except Exception as e:
                # any transport failure is a disconnect: retry, then report once
                self._connected.clear()
                attempt += 1
                if attempt > self.max_retries:
                    lost = e if isinstance(e, SubscriptionError) else SubscriptionError(
                        self._channel, f"{type(e).__name__}: {e}",
                    )
                    logger.error(
                        f"Feed lost after {self.max_retries} retries: {e}",
                        extra={"channel": self._channel, "error_code": lost.code},
                    )
                    if not ready.done():
                        ready.set_exception(lost)
                    else:
                        await self._call_lost(lost)
                    return
                delay = self._backoff(attempt)
                logger.warning(
                    f"Feed disconnected, retry after {delay}ms: {e}",
                    extra={"channel": self._channel, "attempt": attempt},
                )
                await asyncio.sleep(delay / 1000)

    async def _dispatch(self, event: ChangeEvent) -> None:
        handlers = self._handlers
        if handlers is None:
            return
        if event.table == ChangeTable.SESSIONS:
            handler = handlers.on_session_change
        elif event.table == ChangeTable.ROUNDS:
            handler = handlers.on_round_change
        elif event.operation == ChangeOperation.INSERT:
            handler = handlers.on_chat_insert
        else:
            handler = None
        if handler is None:
            return
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                f"Feed handler failed: {e}", exc_info=True,
                extra={"channel": self._channel, "table": event.table.value},
            )

    async def _call_reconnect(self) -> None:
        if self._handlers and self._handlers.on_reconnect:
            try:
                await self._handlers.on_reconnect()
            except Exception as e:
                logger.error(
                    f"Reconnect callback failed: {e}", exc_info=True,
                    extra={"channel": self._channel},
                )

    async def _call_lost(self, error: SubscriptionError) -> None:
        if self._handlers and self._handlers.on_lost:
            try:
                await self._handlers.on_lost(error)
            except Exception as e:
                logger.error(
                    f"Feed-lost callback failed: {e}", exc_info=True,
                    extra={"channel": self._channel},
                )

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** (attempt - 1)) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311


# ─── Singleton (initialized on startup) ──────────────────────────

feed_transport: FeedTransport | None = None


def init_feed(kind: str, database_url: str) -> FeedTransport:
    """Create the process-wide transport for the configured backend."""
    global feed_transport
    if kind == "postgres":
        from snakeoil.infrastructure.pg_notify import PostgresNotifyTransport
        feed_transport = PostgresNotifyTransport(database_url)
    else:
        feed_transport = InMemoryTransport()
    return feed_transport
