"""Change Feed - tests for routing, reconnect, backoff and teardown.

Tests cover:
    - events routed to the handler of their table; chat only on INSERT
    - dropped transport reconnects and calls on_reconnect
    - exhausted retries call on_lost once
    - non-subscription transport errors are retried like any disconnect
    - unsubscribe is idempotent and releases the listener
    - a failing handler does not stop the pump
    - backoff bounds (exponential, capped, +/-25% jitter)
"""

import asyncio
import uuid
from contextlib import asynccontextmanager

import pytest

from snakeoil.core.domain_types import ChangeOperation, ChangeTable
from snakeoil.core.errors import SubscriptionError
from snakeoil.core.records import ChangeEvent
from snakeoil.infrastructure.change_feed import (
    ChangeFeedClient, FeedHandlers, InMemoryTransport, channel_for,
)

SID = uuid.UUID(int=1)


class FlakyTransport(InMemoryTransport):
    """InMemoryTransport whose listen() fails while `down` is set."""

    def __init__(self):
        super().__init__()
        self.down = False
        self.attempts = 0

    @asynccontextmanager
    async def listen(self, channel):
        self.attempts += 1
        if self.down:
            raise SubscriptionError(channel, "transport unreachable")
        async with super().listen(channel) as stream:
            yield stream


class CrashingTransport(InMemoryTransport):
    """InMemoryTransport that fails with driver-level errors, not SubscriptionError."""

    def __init__(self, crash_on_connect=False):
        super().__init__()
        self.crash_on_connect = crash_on_connect
        self.crash_stream = False
        self.crashes = 0
        self.attempts = 0

    @asynccontextmanager
    async def listen(self, channel):
        self.attempts += 1
        if self.crash_on_connect:
            raise RuntimeError("interface error on connect")
        async with super().listen(channel) as stream:
            yield self._guard(stream)

    async def _guard(self, stream):
        async for event in stream:
            if self.crash_stream:
                self.crashes += 1
                raise RuntimeError("interface error mid-stream")
            yield event


class Recorder:
    def __init__(self):
        self.sessions, self.rounds, self.chat = [], [], []
        self.reconnects = 0
        self.lost: list[SubscriptionError] = []

    async def on_session(self, e):
        self.sessions.append(e)

    async def on_round(self, e):
        self.rounds.append(e)

    async def on_chat(self, e):
        self.chat.append(e)

    async def on_reconnect(self):
        self.reconnects += 1

    async def on_lost(self, error):
        self.lost.append(error)

    def handlers(self) -> FeedHandlers:
        return FeedHandlers(
            on_session_change=self.on_session,
            on_round_change=self.on_round,
            on_chat_insert=self.on_chat,
            on_reconnect=self.on_reconnect,
            on_lost=self.on_lost,
        )


def _event(table, operation=ChangeOperation.INSERT):
    return ChangeEvent(table=table, operation=operation, session_id=SID, new={})


def _client(transport, max_retries=3):
    return ChangeFeedClient(transport, max_retries=max_retries, base_delay_ms=1, max_delay_ms=5)


async def test_events_routed_by_table(eventually):
    transport = InMemoryTransport()
    client, rec = _client(transport), Recorder()
    await client.subscribe(SID, rec.handlers())
    channel = channel_for(SID)
    await transport.publish(channel, _event(ChangeTable.SESSIONS, ChangeOperation.UPDATE))
    await transport.publish(channel, _event(ChangeTable.ROUNDS))
    await transport.publish(channel, _event(ChangeTable.MESSAGES))
    await transport.publish(channel, _event(ChangeTable.MESSAGES, ChangeOperation.UPDATE))
    await eventually(lambda: len(rec.chat) == 1 and rec.rounds and rec.sessions)
    await client.unsubscribe()
    assert len(rec.sessions) == 1 and len(rec.rounds) == 1 and len(rec.chat) == 1


async def test_other_channels_not_delivered(eventually):
    transport = InMemoryTransport()
    client, rec = _client(transport), Recorder()
    await client.subscribe(SID, rec.handlers())
    await transport.publish(channel_for(uuid.UUID(int=2)), _event(ChangeTable.SESSIONS))
    await transport.publish(channel_for(SID), _event(ChangeTable.ROUNDS))
    await eventually(lambda: rec.rounds)
    assert rec.sessions == []
    await client.unsubscribe()


async def test_drop_reconnects_and_calls_on_reconnect(eventually):
    transport = InMemoryTransport()
    client, rec = _client(transport), Recorder()
    await client.subscribe(SID, rec.handlers())
    assert transport.drop_connections(channel_for(SID)) == 1
    await eventually(lambda: rec.reconnects == 1)
    assert client.connected
    await transport.publish(channel_for(SID), _event(ChangeTable.ROUNDS))
    await eventually(lambda: rec.rounds)
    assert rec.lost == []
    await client.unsubscribe()


async def test_exhausted_retries_call_on_lost(eventually):
    transport = FlakyTransport()
    client, rec = _client(transport, max_retries=2), Recorder()
    await client.subscribe(SID, rec.handlers())
    transport.down = True
    transport.drop_connections(channel_for(SID))
    await eventually(lambda: rec.lost)
    await eventually(lambda: not client.active)
    assert len(rec.lost) == 1
    assert rec.lost[0].code == "SUBSCRIPTION_LOST"
    # 1 initial + 2 retries
    assert transport.attempts == 3


async def test_subscribe_fails_when_unreachable():
    transport = FlakyTransport()
    transport.down = True
    client = _client(transport, max_retries=1)
    with pytest.raises(SubscriptionError):
        await client.subscribe(SID, Recorder().handlers())
    assert not client.active


async def test_second_subscribe_rejected():
    client = _client(InMemoryTransport())
    await client.subscribe(SID, Recorder().handlers())
    with pytest.raises(SubscriptionError):
        await client.subscribe(SID, Recorder().handlers())
    await client.unsubscribe()


async def test_unsubscribe_is_idempotent_and_releases_listener():
    transport = InMemoryTransport()
    client = _client(transport)
    await client.subscribe(SID, Recorder().handlers())
    assert transport.listener_count(channel_for(SID)) == 1
    await client.unsubscribe()
    await client.unsubscribe()
    assert transport.listener_count(channel_for(SID)) == 0
    assert not client.active


async def test_failing_handler_does_not_stop_pump(eventually):
    transport = InMemoryTransport()
    rec = Recorder()

    async def explode(_event):
        raise RuntimeError("handler bug")

    handlers = rec.handlers()
    handlers.on_session_change = explode
    client = _client(transport)
    await client.subscribe(SID, handlers)
    await transport.publish(channel_for(SID), _event(ChangeTable.SESSIONS))
    await transport.publish(channel_for(SID), _event(ChangeTable.ROUNDS))
    await eventually(lambda: rec.rounds)
    assert client.active
    await client.unsubscribe()


def test_backoff_bounds():
    client = ChangeFeedClient(InMemoryTransport(), base_delay_ms=100, max_delay_ms=1000)
    for _ in range(50):
        assert 75 <= client._backoff(1) <= 125
        assert 150 <= client._backoff(2) <= 250
        assert 750 <= client._backoff(10) <= 1250


async def test_unsubscribe_from_handler_does_not_deadlock(eventually):
    transport = InMemoryTransport()
    client = _client(transport)
    rec = Recorder()

    async def leave(_event):
        await client.unsubscribe()

    handlers = rec.handlers()
    handlers.on_session_change = leave
    await client.subscribe(SID, handlers)
    await transport.publish(channel_for(SID), _event(ChangeTable.SESSIONS))
    await eventually(lambda: not client.active)
    await asyncio.sleep(0)
    assert transport.listener_count(channel_for(SID)) == 0


async def test_unexpected_connect_error_fails_subscribe():
    transport = CrashingTransport(crash_on_connect=True)
    client = _client(transport, max_retries=1)
    with pytest.raises(SubscriptionError) as exc:
        await asyncio.wait_for(client.subscribe(SID, Recorder().handlers()), 1)
    assert "RuntimeError" in exc.value.message
    assert transport.attempts == 2
    assert not client.active


async def test_unexpected_stream_error_reconnects(eventually):
    transport = CrashingTransport()
    client, rec = _client(transport), Recorder()
    await client.subscribe(SID, rec.handlers())
    transport.crash_stream = True
    await transport.publish(channel_for(SID), _event(ChangeTable.ROUNDS))
    await eventually(lambda: transport.crashes == 1)
    transport.crash_stream = False
    await eventually(lambda: rec.reconnects == 1)
    assert client.connected
    await transport.publish(channel_for(SID), _event(ChangeTable.ROUNDS))
    await eventually(lambda: rec.rounds)
    assert rec.lost == []
    await client.unsubscribe()


async def test_unexpected_stream_error_exhausts_to_on_lost(eventually):
    transport = CrashingTransport()
    client, rec = _client(transport, max_retries=2), Recorder()
    await client.subscribe(SID, rec.handlers())
    transport.crash_on_connect = True
    transport.crash_stream = True
    await transport.publish(channel_for(SID), _event(ChangeTable.ROUNDS))
    await eventually(lambda: rec.lost)
    await eventually(lambda: not client.active)
    assert len(rec.lost) == 1
    assert rec.lost[0].code == "SUBSCRIPTION_LOST"
    assert rec.rounds == []
