"""Unit tests for the room TTL caches."""
import time

from common.cache import SimpleTTLCache


class TestSimpleTTLCache:
    """TTL cache wrapper used for room listings and status."""

    def test_set_get_and_overwrite(self):
        cache = SimpleTTLCache[dict](ttl=60)

        cache.set("room-status:1", {"status": "available"})
        cache.set("room-status:1", {"status": "booked"})

        assert cache.get("room-status:1") == {"status": "booked"}
        assert cache.get("room-status:2") is None

    def test_entries_expire(self):
        cache = SimpleTTLCache[str](ttl=1)

        cache.set("room-status:1", "booked")
        time.sleep(1.1)

        assert cache.get("room-status:1") is None

    def test_pop_returns_value_and_ignores_missing_keys(self):
        cache = SimpleTTLCache[str](ttl=60)
        cache.set("room-status:1", "booked")

        assert cache.pop("room-status:1") == "booked"
        assert cache.pop("room-status:1") is None

    def test_pop_prefix_only_drops_one_organization(self):
        cache = SimpleTTLCache[list](ttl=60)
        cache.set("room-list:1:None:None:", [])
        cache.set("room-list:1:4:None:tv", [])
        cache.set("room-list:12:None:None:", [])

        assert cache.pop_prefix("room-list:1:") == 2
        assert cache.get("room-list:12:None:None:") == []
        assert len(cache) == 1

    def test_maxsize_evicts(self):
        cache = SimpleTTLCache[int](ttl=60, maxsize=2)

        for index in range(3):
            cache.set(f"room-status:{index}", index)

        assert len(cache) == 2
        assert cache.get("room-status:2") == 2

    def test_clear(self):
        cache = SimpleTTLCache[int](ttl=60)
        cache.set("room-status:1", 1)

        cache.clear()

        assert len(cache) == 0
