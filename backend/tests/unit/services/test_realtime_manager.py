"""
Unit tests for RealtimeManager.

WHY: Realtime channels drop in production; if reconnects don't happen,
dashboards go stale without anyone noticing. The tests drive channel
status changes through an in-memory transport and check that:
1. Listeners sharing options share one channel
2. CHANNEL_ERROR / TIMED_OUT reconnect with exponential backoff
3. SUBSCRIBED resets the attempt counter and cancels a pending reconnect
4. Reconnects stop after 15 attempts
5. Cache invalidation is retried before giving up
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from boinvit.services.realtime import (
    ChannelStatus,
    RealtimeManager,
    RealtimePayload,
    RealtimeTransport,
    SubscriptionOptions,
    normalize_payload,
)

BOOKINGS = SubscriptionOptions(table="bookings", filter="business_id=eq.b1")


class FakeTransport(RealtimeTransport):
    """Records channels and lets tests fire events and statuses."""

    def __init__(self):
        self.created = []
        self.removed = []
        self.fail_next = 0

    async def create_channel(self, name, options, on_event, on_status):
        if self.fail_next:
            self.fail_next -= 1
            raise ConnectionError("socket closed")
        channel = {"name": name, "options": options, "on_event": on_event, "on_status": on_status}
        self.created.append(channel)
        return channel

    async def remove_channel(self, channel):
        self.removed.append(channel)

    @property
    def latest(self):
        return self.created[-1]


async def _drain():
    """Let scheduled reconnect and dispatch tasks run."""
    for _ in range(5):
        await asyncio.sleep(0)


def _payload(**new) -> RealtimePayload:
    return RealtimePayload(event_type="INSERT", schema="public", table="bookings", new=new)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def manager(transport, sleep, mock_cache):
    return RealtimeManager(transport, query_cache=mock_cache, sleep=sleep, jitter=lambda: 1.0)


class TestSubscriptionOptions:
    def test_channel_key(self):
        assert BOOKINGS.channel_key == "public.bookings.*.business_id=eq.b1"
        assert SubscriptionOptions(table="clients", event="INSERT").channel_key == "public.clients.INSERT.all"


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_listeners_share_channel(self, manager, transport):
        first, second = MagicMock(), MagicMock()

        key = await manager.subscribe(BOOKINGS, first)
        assert await manager.subscribe(BOOKINGS, second) == key

        assert len(transport.created) == 1
        assert manager.get_active_subscriptions()[0]["listeners"] == 2

    @pytest.mark.asyncio
    async def test_channel_closed_with_last_listener(self, manager, transport):
        first, second = MagicMock(), MagicMock()
        key = await manager.subscribe(BOOKINGS, first)
        await manager.subscribe(BOOKINGS, second)

        await manager.unsubscribe(key, first)
        assert transport.removed == []

        await manager.unsubscribe(key, second)
        assert transport.removed == [transport.latest]
        assert manager.get_active_subscriptions() == []

    @pytest.mark.asyncio
    async def test_unsubscribe_bound_method(self, manager, transport):
        """WHY: Services subscribe with `self.handler`, a new object on every access."""

        class Handler:
            def on_change(self, payload):
                pass

        handler = Handler()
        key = await manager.subscribe(BOOKINGS, handler.on_change)

        await manager.unsubscribe(key, handler.on_change)

        assert len(transport.removed) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_all(self, manager, transport):
        key = await manager.subscribe(BOOKINGS, MagicMock())
        await manager.subscribe(BOOKINGS, MagicMock())

        await manager.unsubscribe_all(key)

        assert len(transport.removed) == 1


class TestDispatch:
    @pytest.mark.asyncio
    async def test_event_reaches_listeners_and_invalidates(self, manager, transport, mock_cache):
        listener = AsyncMock()
        await manager.subscribe(BOOKINGS, listener, invalidate=[("dashboard-stats", "b1")])

        transport.latest["on_event"](_payload(business_id="b1"))
        await _drain()

        listener.assert_awaited_once()
        assert listener.await_args.args[0].new == {"business_id": "b1"}
        mock_cache.invalidate.assert_awaited_once_with(("dashboard-stats", "b1"))

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, manager):
        broken = MagicMock(side_effect=ValueError("bad listener"))
        healthy = MagicMock()
        key = await manager.subscribe(BOOKINGS, broken)
        await manager.subscribe(BOOKINGS, healthy)

        await manager.dispatch(key, _payload())

        healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_status_listener_called(self, manager, transport):
        on_status = MagicMock()
        await manager.subscribe(BOOKINGS, MagicMock(), on_status=on_status)

        transport.latest["on_status"](ChannelStatus.SUBSCRIBED)

        on_status.assert_called_once_with("SUBSCRIBED")

    @pytest.mark.asyncio
    async def test_dispatch_task_held_until_done(self, manager, transport):
        """
        WHY: The event loop keeps only weak references to tasks; an
        unreferenced dispatch could be collected before listeners run.
        """
        gate = asyncio.Event()

        async def slow_listener(payload):
            await gate.wait()

        await manager.subscribe(BOOKINGS, slow_listener)
        task = transport.latest["on_event"](_payload(business_id="b1"))
        await _drain()

        assert task in manager._background
        gate.set()
        await _drain()
        assert task.done()
        assert manager._background == set()

    @pytest.mark.asyncio
    async def test_async_status_listener_failure_collected(self, manager, transport):
        on_status = AsyncMock(side_effect=RuntimeError("listener down"))
        await manager.subscribe(BOOKINGS, MagicMock(), on_status=on_status)

        transport.latest["on_status"](ChannelStatus.SUBSCRIBED)
        await _drain()

        on_status.assert_awaited_once_with("SUBSCRIBED")
        assert manager._background == set()


class TestReconnect:
    def test_backoff_delays(self, manager):
        assert manager.reconnect_delay(0) == pytest.approx(1.5)
        assert manager.reconnect_delay(1) == pytest.approx(2.25)
        assert manager.reconnect_delay(4) == pytest.approx(1.5 * 1.5 ** 4)

    def test_jitter_applied(self, transport):
        manager = RealtimeManager(transport, jitter=lambda: 1.1)

        assert manager.reconnect_delay(0) == pytest.approx(1.65)

    @pytest.mark.asyncio
    async def test_channel_error_recreates_channel(self, manager, transport, sleep):
        key = await manager.subscribe(BOOKINGS, MagicMock())
        original = transport.latest

        original["on_status"](ChannelStatus.CHANNEL_ERROR)
        await _drain()

        sleep.assert_awaited_once_with(pytest.approx(1.5))
        assert transport.removed == [original]
        assert len(transport.created) == 2
        assert manager.get_diagnostics()["reconnect_attempts"][key] == 1

    @pytest.mark.asyncio
    async def test_delays_grow_until_subscribed(self, manager, transport, sleep):
        key = await manager.subscribe(BOOKINGS, MagicMock())

        for _ in range(3):
            transport.latest["on_status"](ChannelStatus.TIMED_OUT)
            await _drain()

        delays = [c.args[0] for c in sleep.await_args_list]
        assert delays == pytest.approx([1.5, 2.25, 3.375])

        transport.latest["on_status"](ChannelStatus.SUBSCRIBED)
        diagnostics = manager.get_diagnostics()
        assert diagnostics["reconnect_attempts"][key] == 0
        assert diagnostics["consecutive_failures"] == 0
        assert diagnostics["connection_status"][key]["status"] == "SUBSCRIBED"

    @pytest.mark.asyncio
    async def test_subscribed_cancels_pending_reconnect(self, transport, mock_cache):
        blocked = asyncio.Event()

        async def slow_sleep(_delay):
            await blocked.wait()

        manager = RealtimeManager(transport, query_cache=mock_cache, sleep=slow_sleep, jitter=lambda: 1.0)
        await manager.subscribe(BOOKINGS, MagicMock())

        transport.latest["on_status"](ChannelStatus.CHANNEL_ERROR)
        await _drain()
        transport.latest["on_status"](ChannelStatus.SUBSCRIBED)
        blocked.set()
        await _drain()

        assert len(transport.created) == 1
        assert transport.removed == []

    @pytest.mark.asyncio
    async def test_stops_after_max_attempts(self, manager, transport):
        """
        WHY: A table that can't be subscribed must not reconnect forever;
        dashboards fall back to cache expiry.
        """
        await manager.subscribe(BOOKINGS, MagicMock())

        for _ in range(RealtimeManager.MAX_RECONNECT_ATTEMPTS + 3):
            transport.latest["on_status"](ChannelStatus.CHANNEL_ERROR)
            await _drain()

        assert len(transport.created) == 1 + RealtimeManager.MAX_RECONNECT_ATTEMPTS

    @pytest.mark.asyncio
    async def test_failed_create_retried(self, manager, transport):
        transport.fail_next = 1

        key = await manager.subscribe(BOOKINGS, MagicMock())
        assert transport.created == []

        await _drain()

        assert len(transport.created) == 1
        diagnostics = manager.get_diagnostics()
        assert diagnostics["last_error"] == "socket closed"
        assert diagnostics["connection_attempts"] == 2
        assert diagnostics["reconnect_attempts"][key] == 1

    @pytest.mark.asyncio
    async def test_reconnect_all_and_pause(self, transport, mock_cache):
        blocked = asyncio.Event()

        async def slow_sleep(_delay):
            await blocked.wait()

        manager = RealtimeManager(transport, query_cache=mock_cache, sleep=slow_sleep, jitter=lambda: 1.0)
        await manager.subscribe(BOOKINGS, MagicMock())
        await manager.subscribe(SubscriptionOptions(table="clients"), MagicMock())

        manager.reconnect_all()
        manager.pause()
        blocked.set()
        await _drain()

        assert len(transport.created) == 2

    @pytest.mark.asyncio
    async def test_status_after_unsubscribe_ignored(self, manager, transport):
        listener = MagicMock()
        key = await manager.subscribe(BOOKINGS, listener)
        channel = transport.latest
        await manager.unsubscribe(key, listener)

        channel["on_status"](ChannelStatus.CHANNEL_ERROR)
        await _drain()

        assert len(transport.created) == 1


class TestInvalidateQueries:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, manager, mock_cache, sleep):
        mock_cache.invalidate.side_effect = [ConnectionError("Redis down"), 1]

        assert await manager.invalidate_queries([("dashboard-stats", "b1")]) is True
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, manager, mock_cache, sleep):
        mock_cache.invalidate.side_effect = ConnectionError("Redis down")

        assert await manager.invalidate_queries([("dashboard-stats", "b1")]) is False
        assert mock_cache.invalidate.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_without_cache(self, transport):
        assert await RealtimeManager(transport).invalidate_queries([("x",)]) is False


class TestDispose:
    @pytest.mark.asyncio
    async def test_removes_everything(self, manager, transport):
        await manager.subscribe(BOOKINGS, MagicMock())
        await manager.subscribe(SubscriptionOptions(table="clients"), MagicMock())

        await manager.dispose()

        assert len(transport.removed) == 2
        assert manager.get_active_subscriptions() == []
        assert manager.get_diagnostics()["connection_status"] == {}

    @pytest.mark.asyncio
    async def test_cancels_listener_tasks(self, manager, transport):
        gate = asyncio.Event()

        async def slow_listener(payload):
            await gate.wait()

        await manager.subscribe(BOOKINGS, slow_listener)
        task = transport.latest["on_event"](_payload())
        await _drain()

        await manager.dispose()
        await _drain()

        assert task.cancelled()
        assert manager._background == set()


class TestNormalizePayload:
    def test_wire_shape(self):
        raw = {
            "data": {
                "type": "UPDATE",
                "schema": "public",
                "table": "bookings",
                "record": {"id": "1", "business_id": "b1"},
                "old_record": {"id": "1"},
                "commit_timestamp": "2024-04-05T10:00:00Z",
            }
        }

        payload = normalize_payload(raw, BOOKINGS)

        assert payload.event_type == "UPDATE"
        assert payload.new["business_id"] == "b1"
        assert payload.old == {"id": "1"}
        assert payload.commit_timestamp == "2024-04-05T10:00:00Z"

    def test_js_client_shape(self):
        raw = {"eventType": "DELETE", "new": {}, "old": {"business_id": "b1"}}

        payload = normalize_payload(raw, BOOKINGS)

        assert payload.event_type == "DELETE"
        assert payload.table == "bookings"
        assert payload.old == {"business_id": "b1"}
