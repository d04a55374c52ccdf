# tests/unit/test_cache.py
# Unit tests for the TTL cache

import pytest


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class TestCache:

    def test_get_returns_value_before_expiry(self):
        from chapter_portal.utils.cache import Cache

        clock = FakeClock()
        cache = Cache(ttl_seconds=60, clock=clock)
        cache.set("k", {"a": 1})
        clock.advance(59.9)

        assert cache.get("k") == {"a": 1}

    def test_entry_expires_after_ttl(self):
        from chapter_portal.utils.cache import Cache

        clock = FakeClock()
        cache = Cache(ttl_seconds=60, clock=clock)
        cache.set("k", "v")
        clock.advance(60)

        assert cache.get("k") is None
        assert cache.get("k", "fallback") == "fallback"

    def test_zero_ttl_never_expires(self):
        from chapter_portal.utils.cache import Cache

        clock = FakeClock()
        cache = Cache(ttl_seconds=60, clock=clock)
        cache.set("lastId:recruits:1", 7, ttl_seconds=0)
        clock.advance(10 ** 7)

        assert cache.get("lastId:recruits:1") == 7

    def test_negative_ttl_rejected(self):
        from chapter_portal.utils.cache import Cache

        with pytest.raises(ValueError):
            Cache().set("k", 1, ttl_seconds=-1)

    def test_falsy_values_are_hits(self):
        from chapter_portal.utils.cache import Cache

        cache = Cache()
        cache.set("flag", False)
        cache.set("rows", [])

        assert cache.contains("flag")
        assert cache.get("rows", "missing") == []
        assert cache.hits == 2

    def test_delete_reports_presence(self):
        from chapter_portal.utils.cache import Cache

        cache = Cache()
        cache.set("k", 1)

        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_delete_prefix_only_touches_matching_keys(self):
        from chapter_portal.utils.cache import Cache

        cache = Cache()
        cache.set("table:records:Sigma", 1)
        cache.set("table:records:Buttons", 2)
        cache.set("table:rush:Rush Index", 3)

        assert cache.delete_prefix("table:records:") == 2
        assert cache.keys() == ["table:rush:Rush Index"]

    def test_delete_all_and_sweep(self):
        from chapter_portal.utils.cache import Cache

        clock = FakeClock()
        cache = Cache(ttl_seconds=10, clock=clock)
        cache.set("short", 1)
        cache.set("forever", 2, ttl_seconds=0)
        clock.advance(11)

        assert cache.sweep() == 1
        assert cache.keys() == ["forever"]

        cache.delete_all()
        assert cache.keys() == []

    def test_stats_count_hits_and_misses(self):
        from chapter_portal.utils.cache import Cache

        cache = Cache()
        cache.set("k", 1)
        cache.get("k")
        cache.get("absent")

        assert cache.stats() == (1, 1)

    def test_build_key_is_order_independent(self):
        from chapter_portal.utils.cache import Cache

        a = Cache.build_key("q", {"x": 1, "y": 2})
        b = Cache.build_key("q", {"y": 2, "x": 1})

        assert a == b
        assert a.startswith("q:")
