# chapter_portal/services/notifications.py
# Live-update fan-out to connected browsers over server-sent events

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from chapter_portal.constants import EVENT_PING, EVENT_PRESENCE
from chapter_portal.middleware.error_handler import ValidationError
from chapter_portal.observability.metrics import EVICTED_SUBSCRIBERS, OPEN_SUBSCRIBERS

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"  # terminal


class SubscriberGone(Exception):
    """A write to a subscriber failed; the connection must be evicted."""


@dataclass(frozen=True)
class Event:
    type: str
    payload: Any = field(default_factory=dict)

    def to_sse(self) -> Dict[str, str]:
        return {"event": self.type, "data": json.dumps(self.payload, default=str)}


_CLOSE = object()


class SubscriberConnection:
    """
    One long-lived SSE channel. Writes only enqueue, so publishing never
    waits on a slow client; a full queue counts as a failed write.
    ``last_write_at`` advances each time the transport accepts an event.
    """

    def __init__(self, name: str, queue_size: int = 100, clock: Callable[[], float] = time.monotonic):
        self.id = uuid.uuid4().hex
        self.name = name
        self.state = ConnectionState.CONNECTING
        self._clock = clock
        self.created_at = clock()
        self.last_write_at = self.created_at
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def open(self) -> None:
        if self.state != ConnectionState.CONNECTING:
            raise RuntimeError(f"cannot open a {self.state.value} connection")
        self.state = ConnectionState.OPEN

    def write(self, event: Event) -> None:
        if self.state != ConnectionState.OPEN:
            raise SubscriberGone(f"connection is {self.state.value}")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            raise SubscriberGone("outbound queue full")

    def close(self) -> None:
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        # Drop the backlog so the close marker always fits
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    async def stream(self) -> AsyncIterator[Dict[str, str]]:
        """Events in SSE dict form until the connection closes."""
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item.to_sse()
            # Resumed only after the transport has sent the event
            self.last_write_at = self._clock()

    def __repr__(self) -> str:
        return f"SubscriberConnection({self.id[:8]}, {self.name!r}, {self.state.value})"


class NotificationHub:
    """
    Process-wide set of live subscribers.

    - ``publish`` delivers to every OPEN connection and evicts those whose
      write fails; any eviction triggers one presence broadcast.
    - ``notify`` is ``publish`` that logs failures instead of raising, for
      use after a write has already been committed.
    - A keep-alive task pings every ``ping_interval`` seconds and evicts
      connections with no successful write for ``stale_after`` seconds.
    """

    def __init__(
        self,
        ping_interval: float = 15.0,
        stale_after: float = 60.0,
        queue_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ping_interval = ping_interval
        self.stale_after = stale_after
        self.queue_size = queue_size
        self._clock = clock
        self._connections: Dict[str, SubscriberConnection] = {}
        self._keepalive_task: Optional[asyncio.Task] = None

    # --- membership ---

    def subscribe(self, name: Optional[str]) -> SubscriberConnection:
        display_name = (name or "").strip()
        if not display_name:
            raise ValidationError("A display name is required to subscribe")
        conn = SubscriberConnection(display_name, self.queue_size, self._clock)
        conn.open()
        self._connections[conn.id] = conn
        OPEN_SUBSCRIBERS.set(len(self._connections))
        logger.info(f"Subscriber {conn.id[:8]} ({display_name}) connected; {len(self._connections)} open")
        self.publish(EVENT_PRESENCE, self._presence_payload())
        return conn

    def unsubscribe(self, conn: SubscriberConnection, reason: str = "closed") -> None:
        """Peer went away or the stream ended."""
        if self._connections.pop(conn.id, None) is None:
            conn.close()
            return
        conn.close()
        OPEN_SUBSCRIBERS.set(len(self._connections))
        EVICTED_SUBSCRIBERS.labels(reason=reason).inc()
        logger.info(f"Subscriber {conn.id[:8]} ({conn.name}) removed: {reason}")
        self.publish(EVENT_PRESENCE, self._presence_payload())

    def current_subscriber_names(self) -> List[str]:
        return sorted({c.name for c in self._connections.values() if c.is_open})

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _presence_payload(self) -> Dict[str, Any]:
        names = self.current_subscriber_names()
        return {"names": names, "count": len(names)}

    # --- delivery ---

    def _deliver(self, event: Event) -> tuple[int, List[SubscriberConnection]]:
        delivered = 0
        failed: List[SubscriberConnection] = []
        for conn in list(self._connections.values()):
            if not conn.is_open:
                failed.append(conn)
                continue
            try:
                conn.write(event)
                delivered += 1
            except SubscriberGone as e:
                logger.warning(f"Write to subscriber {conn.id[:8]} failed: {e}")
                failed.append(conn)
        return delivered, failed

    def _evict(self, conns: List[SubscriberConnection], reason: str) -> None:
        for conn in conns:
            if self._connections.pop(conn.id, None) is not None:
                EVICTED_SUBSCRIBERS.labels(reason=reason).inc()
            conn.close()
        OPEN_SUBSCRIBERS.set(len(self._connections))

    def publish(self, event_type: str, payload: Any = None) -> int:
        """Deliver to every OPEN connection; returns the number delivered."""
        event = Event(event_type, {} if payload is None else payload)
        delivered, failed = self._deliver(event)
        while failed:
            self._evict(failed, "write_failed")
            # Presence after evictions; a failure here evicts too
            _, failed = self._deliver(Event(EVENT_PRESENCE, self._presence_payload()))
        return delivered

    def notify(self, event_type: str, payload: Any = None) -> int:
        """Publish without ever raising; failures are logged."""
        try:
            return self.publish(event_type, payload)
        except Exception as e:
            logger.error(f"Notification '{event_type}' failed: {type(e).__name__}: {e}")
            return 0

    # --- keep-alive ---

    def evict_stale(self) -> int:
        now = self._clock()
        stale = [c for c in self._connections.values() if now - c.last_write_at > self.stale_after]
        if not stale:
            return 0
        for conn in stale:
            logger.info(f"Subscriber {conn.id[:8]} ({conn.name}) stale for {now - conn.last_write_at:.0f}s")
        self._evict(stale, "stale")
        self.publish(EVENT_PRESENCE, self._presence_payload())
        return len(stale)

    def ping(self) -> int:
        delivered = self.publish(EVENT_PING, {"ts": int(time.time() * 1000)})
        self.evict_stale()
        return delivered

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                self.ping()
            except Exception as e:
                logger.error(f"Keep-alive cycle failed: {e}", exc_info=True)

    def start(self) -> None:
        if self._keepalive_task is None or self._keepalive_task.done():
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    async def close_all(self) -> None:
        """Stop pinging and actively close every connection (shutdown)."""
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            try:
                await self._keepalive_task
            except asyncio.CancelledError:
                pass
            self._keepalive_task = None
        conns = list(self._connections.values())
        self._connections.clear()
        for conn in conns:
            conn.close()
        OPEN_SUBSCRIBERS.set(0)
        if conns:
            logger.info(f"Closed {len(conns)} subscriber connections")
