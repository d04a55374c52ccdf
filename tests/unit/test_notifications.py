# tests/unit/test_notifications.py
# Unit tests for the live-update hub

import json

import pytest


def drain(conn):
    events = []
    while not conn._queue.empty():
        item = conn._queue.get_nowait()
        if hasattr(item, "type"):
            events.append(item)
    return events


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestNotificationHub:

    @pytest.mark.asyncio
    async def test_subscribe_broadcasts_presence(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()
        alice = hub.subscribe("Alice")
        bob = hub.subscribe("Bob")

        last = drain(alice)[-1]
        assert last.type == "presence"
        assert last.payload == {"names": ["Alice", "Bob"], "count": 2}
        assert drain(bob)[-1].payload["count"] == 2
        assert hub.connection_count == 2

    @pytest.mark.asyncio
    async def test_presence_names_are_distinct(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()
        hub.subscribe("Alice")
        hub.subscribe("Alice")

        assert hub.current_subscriber_names() == ["Alice"]
        assert hub.connection_count == 2

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self):
        from chapter_portal.middleware.error_handler import ValidationError
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()
        with pytest.raises(ValidationError):
            hub.subscribe("   ")
        assert hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_publish_reaches_every_open_connection(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()
        conns = [hub.subscribe(n) for n in ("A", "B", "C")]
        for c in conns:
            drain(c)

        delivered = hub.publish("refresh", {"table": "polls"})

        assert delivered == 3
        for c in conns:
            assert [(e.type, e.payload) for e in drain(c)] == [("refresh", {"table": "polls"})]

    @pytest.mark.asyncio
    async def test_failed_write_evicts_and_updates_presence(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub(queue_size=2)
        slow = hub.subscribe("Slow")        # queue: presence
        fast = hub.subscribe("Fast")        # slow queue: presence, presence (full)
        drain(fast)

        delivered = hub.publish("refresh")

        assert delivered == 1
        assert hub.connection_count == 1
        assert not slow.is_open
        events = drain(fast)
        assert [e.type for e in events] == ["refresh", "presence"]
        assert events[-1].payload == {"names": ["Fast"], "count": 1}

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()
        a = hub.subscribe("A")
        b = hub.subscribe("B")
        drain(b)

        hub.unsubscribe(a)
        hub.unsubscribe(a)

        assert hub.connection_count == 1
        assert [e.payload["names"] for e in drain(b)] == [["B"]]

    @pytest.mark.asyncio
    async def test_stale_connections_evicted(self):
        from chapter_portal.services.notifications import NotificationHub

        clock = FakeClock()
        hub = NotificationHub(stale_after=60, clock=clock)
        hub.subscribe("Idle")
        clock.now = 61

        assert hub.evict_stale() == 1
        assert hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_notify_never_raises(self, monkeypatch):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()

        def broken(*args, **kwargs):
            raise RuntimeError("transport exploded")

        monkeypatch.setattr(hub, "publish", broken)
        assert hub.notify("refresh") == 0

    @pytest.mark.asyncio
    async def test_stream_yields_sse_dicts_until_closed(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub()
        conn = hub.subscribe("Reader")
        hub.publish("announcement", {"message": "Chapter at 8"})
        hub.unsubscribe(conn)

        received = [item async for item in conn.stream()]

        # Closing drops the backlog; nothing after the close marker
        assert received == []

        conn2 = hub.subscribe("Reader2")
        hub.publish("announcement", {"message": "hi"})
        items = []
        async for item in conn2.stream():
            items.append(item)
            if item["event"] == "announcement":
                break
        assert items[-1] == {"event": "announcement", "data": json.dumps({"message": "hi"})}

    @pytest.mark.asyncio
    async def test_close_all(self):
        from chapter_portal.services.notifications import NotificationHub

        hub = NotificationHub(ping_interval=0.01)
        conns = [hub.subscribe(n) for n in ("A", "B")]
        hub.start()

        await hub.close_all()

        assert hub.connection_count == 0
        assert all(not c.is_open for c in conns)
