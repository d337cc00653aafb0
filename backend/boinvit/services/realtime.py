"""
Realtime subscription manager.

WHAT: Keeps Supabase Realtime `postgres_changes` channels open for the
tables that feed dashboards, fans events out to listeners and invalidates
cached queries after every change.

WHY: Realtime channels drop (network blips, Supabase restarts, idle
timeouts). A dropped channel means stale dashboards, so every channel is
re-created with exponential backoff until it reports SUBSCRIBED again or
the attempt cap is reached.

HOW:
1. One channel per key "{schema}.{table}.{event}.{filter}"; listeners
   subscribing with the same options share it
2. Channel status callbacks drive reconnects: SUBSCRIBED resets the
   attempt counter, CHANNEL_ERROR / TIMED_OUT schedule a reconnect after
   1.5s * 1.5^attempt with +/-10% jitter
3. Reconnect = remove the old channel, create a new one
4. The channel transport is injectable; SupabaseRealtimeTransport talks
   to Supabase, tests use an in-memory fake
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from supabase import acreate_client

from boinvit.core.config import settings
from boinvit.core.exceptions import RealtimeError
from boinvit.services.query_cache import QueryCache

logger = logging.getLogger(__name__)


# ============================================================================
# Types
# ============================================================================


class ChannelStatus:
    """Channel states reported by Supabase Realtime (plus our PENDING)."""

    PENDING = "PENDING"
    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


RECONNECT_STATUSES = (ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT)


@dataclass(frozen=True)
class SubscriptionOptions:
    """What to listen to: a table, optionally narrowed by event and filter."""

    table: str
    schema: str = "public"
    event: str = "*"
    filter: Optional[str] = None

    @property
    def channel_key(self) -> str:
        return f"{self.schema or 'public'}.{self.table}.{self.event or '*'}.{self.filter or 'all'}"


@dataclass
class RealtimePayload:
    """A database change event, normalized from the transport's payload."""

    event_type: str
    schema: str
    table: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: Optional[str] = None


EventListener = Callable[[RealtimePayload], Any]
StatusListener = Callable[[str], Any]
QueryKey = Sequence[Any]


@dataclass
class ChannelState:
    status: str = ChannelStatus.PENDING
    last_updated: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ConnectionDiagnostics:
    connection_attempts: int = 0
    last_connection_attempt: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    connection_status: Dict[str, ChannelState] = field(default_factory=dict)


class RealtimeTransport:
    """
    Channel transport interface.

    `create_channel` must call `on_event` for every change and `on_status`
    for every status change, and return an opaque channel handle.
    """

    async def create_channel(
        self,
        name: str,
        options: SubscriptionOptions,
        on_event: Callable[[RealtimePayload], None],
        on_status: Callable[[str], None],
    ) -> Any:
        raise NotImplementedError

    async def remove_channel(self, channel: Any) -> None:
        raise NotImplementedError


# ============================================================================
# Manager
# ============================================================================


class RealtimeManager:
    """
    Realtime channel manager with reconnect and cache invalidation.

    Example:
        manager = RealtimeManager(SupabaseRealtimeTransport(), query_cache=cache)
        key = await manager.subscribe(
            SubscriptionOptions(table="bookings", filter=f"business_id=eq.{business_id}"),
            on_booking_change,
            invalidate=[("dashboard-stats", business_id)],
        )
    """

    MAX_RECONNECT_ATTEMPTS = 15
    INITIAL_RECONNECT_DELAY = 1.5
    BACKOFF_FACTOR = 1.5
    INVALIDATE_MAX_RETRIES = 3
    INVALIDATE_RETRY_DELAY = 0.5

    def __init__(
        self,
        transport: RealtimeTransport,
        query_cache: Optional[QueryCache] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = lambda: random.uniform(0.9, 1.1),
    ):
        self._transport = transport
        self._query_cache = query_cache
        self._sleep = sleep
        self._jitter = jitter

        self._channels: Dict[str, Any] = {}
        self._options: Dict[str, SubscriptionOptions] = {}
        # key -> [(original listener, wrapped listener)]
        self._event_listeners: Dict[str, List[tuple]] = {}
        self._status_listeners: Dict[str, List[StatusListener]] = {}
        self._reconnect_tasks: Dict[str, asyncio.Task] = {}
        # Listener tasks in flight; the loop only keeps weak references
        self._background: Set[asyncio.Task] = set()
        self._reconnect_attempts: Dict[str, int] = {}
        self._diagnostics = ConnectionDiagnostics()
        self._channel_seq = 0

    # ------------------------------------------------------------------
    # Subscribe / unsubscribe
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        options: SubscriptionOptions,
        on_event: EventListener,
        on_status: Optional[StatusListener] = None,
        invalidate: Optional[List[QueryKey]] = None,
    ) -> str:
        """
        Register a listener, creating the channel on first use.

        Args:
            options: Table/event/filter to listen to
            on_event: Called with each RealtimePayload (sync or async)
            on_status: Called with each channel status change
            invalidate: Query keys invalidated after every event

        Returns:
            The channel key, used to unsubscribe
        """
        key = options.channel_key
        self._options[key] = options

        async def wrapped(payload: RealtimePayload) -> None:
            await _call(on_event, payload)
            if invalidate:
                await self.invalidate_queries(invalidate)

        self._event_listeners.setdefault(key, []).append((on_event, wrapped))
        if on_status is not None:
            self._status_listeners.setdefault(key, []).append(on_status)

        if key not in self._channels and key not in self._reconnect_tasks:
            await self._create_channel(key)

        logger.info(f"Subscribed to {key}")
        return key

    async def unsubscribe(self, key: str, listener: EventListener) -> None:
        """Remove one listener; the channel is closed when none remain."""
        listeners = self._event_listeners.get(key)
        if listeners is None:
            return

        # == rather than `is`: bound methods are recreated on each attribute access
        self._event_listeners[key] = [pair for pair in listeners if pair[0] != listener]
        if not self._event_listeners[key]:
            await self._cleanup_channel(key)

    async def unsubscribe_all(self, key: str) -> None:
        """Remove every listener for a key and close its channel."""
        await self._cleanup_channel(key)

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------

    async def _create_channel(self, key: str) -> None:
        options = self._options[key]
        self._diagnostics.connection_attempts += 1
        self._diagnostics.last_connection_attempt = datetime.utcnow()
        self._diagnostics.connection_status[key] = ChannelState(ChannelStatus.PENDING)

        self._channel_seq += 1
        name = f"boinvit-{key}-{self._channel_seq}"

        try:
            channel = await self._transport.create_channel(
                name,
                options,
                on_event=lambda payload: self._dispatch_event(key, payload),
                on_status=lambda status: self.handle_status(key, status),
            )
        except Exception as e:
            logger.error(f"Error creating channel for {key}: {e}")
            self._diagnostics.last_error = str(e)
            self._diagnostics.consecutive_failures += 1
            self._schedule_reconnect(key)
            return

        self._channels[key] = channel
        logger.debug(f"Channel created for {key}")

    async def _cleanup_channel(self, key: str) -> None:
        self._event_listeners.pop(key, None)
        self._status_listeners.pop(key, None)
        self._options.pop(key, None)
        self._reconnect_attempts.pop(key, None)
        self._diagnostics.connection_status.pop(key, None)
        self._cancel_reconnect(key)

        channel = self._channels.pop(key, None)
        if channel is not None:
            try:
                await self._transport.remove_channel(channel)
            except Exception as e:
                logger.error(f"Error removing channel {key}: {e}")

        logger.info(f"Cleaned up channel {key}")

    # ------------------------------------------------------------------
    # Events and status
    # ------------------------------------------------------------------

    def _dispatch_event(self, key: str, payload: RealtimePayload) -> Optional[asyncio.Task]:
        """Transport callback; fans out on the event loop."""
        if not self._event_listeners.get(key):
            return None
        return self._spawn(self.dispatch(key, payload))

    def _spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Realtime listener task failed: {task.exception()!r}")

    async def dispatch(self, key: str, payload: RealtimePayload) -> None:
        """
        Deliver one payload to every listener of a channel.

        A failing listener is logged and skipped; the rest still run.
        """
        logger.debug(f"[{payload.table}] {payload.event_type} on {key}")
        for _listener, wrapped in list(self._event_listeners.get(key, [])):
            try:
                await wrapped(payload)
            except Exception as e:
                logger.error(f"Error in event listener for {key}: {e}", exc_info=True)

    def handle_status(self, key: str, status: str) -> None:
        """Transport callback for channel status changes."""
        if key not in self._options:
            return

        self._diagnostics.connection_status[key] = ChannelState(status)
        logger.info(f"Channel {key} status: {status}")

        if status == ChannelStatus.SUBSCRIBED:
            self._reconnect_attempts[key] = 0
            self._diagnostics.consecutive_failures = 0
            self._cancel_reconnect(key)

        if status in RECONNECT_STATUSES:
            self._diagnostics.consecutive_failures += 1
            self._schedule_reconnect(key)

        for listener in list(self._status_listeners.get(key, [])):
            try:
                result = listener(status)
                if inspect.isawaitable(result):
                    self._spawn(result)
            except Exception as e:
                logger.error(f"Error in status listener for {key}: {e}")

    async def invalidate_queries(self, query_keys: List[QueryKey]) -> bool:
        """
        Invalidate cached queries, retrying up to 3 times (0.5s * attempt apart).

        Returns:
            True once every key was invalidated, False if retries ran out
        """
        if self._query_cache is None:
            return False

        for attempt in range(1, self.INVALIDATE_MAX_RETRIES + 1):
            try:
                for query_key in query_keys:
                    await self._query_cache.invalidate(query_key)
                return True
            except Exception as e:
                if attempt == self.INVALIDATE_MAX_RETRIES:
                    logger.error(f"Failed to invalidate queries after {attempt} attempts: {e}")
                    return False
                logger.warning(f"Retrying query invalidation ({attempt}/{self.INVALIDATE_MAX_RETRIES})")
                await self._sleep(self.INVALIDATE_RETRY_DELAY * attempt)
        return False

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff delay in seconds before reconnect number `attempt + 1`."""
        return self.INITIAL_RECONNECT_DELAY * (self.BACKOFF_FACTOR ** attempt) * self._jitter()

    def _schedule_reconnect(self, key: str) -> bool:
        attempts = self._reconnect_attempts.get(key, 0)
        if attempts >= self.MAX_RECONNECT_ATTEMPTS:
            logger.error(
                f"Max reconnect attempts ({self.MAX_RECONNECT_ATTEMPTS}) reached for {key}; "
                "updates for this table will be delayed"
            )
            return False

        delay = self.reconnect_delay(attempts)
        self._cancel_reconnect(key)

        logger.info(f"Reconnect attempt {attempts + 1} for {key} in {delay:.2f}s")
        self._reconnect_tasks[key] = asyncio.get_running_loop().create_task(
            self._reconnect_after(key, delay, attempts + 1)
        )
        self._reconnect_attempts[key] = attempts + 1
        return True

    async def _reconnect_after(self, key: str, delay: float, attempt: int) -> None:
        await self._sleep(delay)
        # Detach before cleanup so _create_channel can't cancel this task
        self._reconnect_tasks.pop(key, None)

        if key not in self._options:
            return

        old_channel = self._channels.pop(key, None)
        if old_channel is not None:
            try:
                await self._transport.remove_channel(old_channel)
            except Exception as e:
                logger.error(f"Error removing stale channel {key}: {e}")

        await self._create_channel(key)
        logger.info(f"Reconnection attempt {attempt} executed for {key}")

    def _cancel_reconnect(self, key: str) -> None:
        task = self._reconnect_tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def reconnect_all(self) -> None:
        """Schedule a reconnect for every open channel (e.g. network restored)."""
        logger.info(f"Reconnecting all channels ({len(self._channels)} total)")
        for key in list(self._options):
            self._schedule_reconnect(key)

    def pause(self) -> None:
        """Cancel pending reconnects while the network is known to be down."""
        logger.info("Realtime paused; pending reconnects cancelled")
        for key in list(self._reconnect_tasks):
            self._cancel_reconnect(key)

    # ------------------------------------------------------------------
    # Diagnostics / shutdown
    # ------------------------------------------------------------------

    def get_diagnostics(self) -> Dict[str, Any]:
        diag = self._diagnostics
        return {
            "connection_attempts": diag.connection_attempts,
            "last_connection_attempt": (
                diag.last_connection_attempt.isoformat() if diag.last_connection_attempt else None
            ),
            "consecutive_failures": diag.consecutive_failures,
            "last_error": diag.last_error,
            "connection_status": {
                key: {"status": state.status, "last_updated": state.last_updated.isoformat()}
                for key, state in diag.connection_status.items()
            },
            "reconnect_attempts": dict(self._reconnect_attempts),
        }

    def get_active_subscriptions(self) -> List[Dict[str, Any]]:
        subscriptions = []
        for key in self._channels:
            options = self._options.get(key)
            if options is None:
                continue
            state = self._diagnostics.connection_status.get(key)
            subscriptions.append(
                {
                    "key": key,
                    "channel": f"{options.schema}.{options.table}",
                    "event": options.event,
                    "filter": options.filter,
                    "listeners": len(self._event_listeners.get(key, [])),
                    "status": state.status if state else ChannelStatus.PENDING,
                }
            )
        return subscriptions

    async def dispose(self) -> None:
        """Cancel every timer and remove every channel."""
        for key in list(self._reconnect_tasks):
            self._cancel_reconnect(key)
        for task in list(self._background):
            task.cancel()
        self._background.clear()

        for key, channel in list(self._channels.items()):
            try:
                await self._transport.remove_channel(channel)
            except Exception as e:
                logger.error(f"Error removing channel {key} during disposal: {e}")

        self._channels.clear()
        self._options.clear()
        self._event_listeners.clear()
        self._status_listeners.clear()
        self._reconnect_attempts.clear()
        self._diagnostics.connection_status.clear()
        logger.info("Realtime manager disposed")


async def _call(func: Callable, *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# Supabase transport
# ============================================================================


def normalize_payload(raw: Dict[str, Any], options: SubscriptionOptions) -> RealtimePayload:
    """
    Turn a Supabase postgres_changes payload into a RealtimePayload.

    Accepts both the wire shape {"data": {"type", "record", "old_record"}}
    and the JS-client shape {"eventType", "new", "old"}.
    """
    data = raw.get("data", raw) if isinstance(raw, dict) else {}
    return RealtimePayload(
        event_type=data.get("type") or data.get("eventType") or options.event,
        schema=data.get("schema") or options.schema,
        table=data.get("table") or options.table,
        new=data.get("record") or data.get("new") or {},
        old=data.get("old_record") or data.get("old") or {},
        commit_timestamp=data.get("commit_timestamp"),
    )


class SupabaseRealtimeTransport(RealtimeTransport):
    """Realtime transport over the supabase async client."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        self._url = url or settings.SUPABASE_URL
        self._key = key or settings.SUPABASE_SERVICE_ROLE_KEY or settings.SUPABASE_ANON_KEY
        self._client = None

    async def _get_client(self):
        if self._client is None:
            if not self._url or not self._key:
                raise RealtimeError(message="Supabase URL or key not configured")
            self._client = await acreate_client(self._url, self._key)
        return self._client

    async def create_channel(self, name, options, on_event, on_status):
        client = await self._get_client()
        channel = client.channel(name)

        def handle_change(raw: Dict[str, Any]) -> None:
            on_event(normalize_payload(raw, options))

        def handle_status(state: Any, error: Optional[Exception] = None) -> None:
            if error is not None:
                logger.warning(f"Realtime channel {name} error: {error}")
            on_status(str(getattr(state, "value", state)))

        kwargs: Dict[str, Any] = {"schema": options.schema, "table": options.table}
        if options.filter:
            kwargs["filter"] = options.filter

        channel.on_postgres_changes(options.event, handle_change, **kwargs)
        await channel.subscribe(handle_status)
        return channel

    async def remove_channel(self, channel: Any) -> None:
        client = await self._get_client()
        await client.remove_channel(channel)
