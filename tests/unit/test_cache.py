"""Unit tests for cache utilities."""
import time

from roombook.cache import SimpleTTLCache, room_key


class TestSimpleTTLCache:
    """Test the TTL cache implementation."""

    def test_cache_set_and_get(self):
        """Test basic set and get operations."""
        cache = SimpleTTLCache[str](ttl=60)

        cache.set("key1", "value1")
        assert cache.get("key1") == "value1"

    def test_cache_get_nonexistent_key(self):
        """Test getting a key that doesn't exist returns None."""
        assert SimpleTTLCache[str](ttl=60).get("nonexistent") is None

    def test_cache_ttl_expiration(self):
        """Test that values expire after TTL."""
        cache = SimpleTTLCache[str](ttl=1)

        cache.set("key1", "value1")
        time.sleep(1.1)

        assert cache.get("key1") is None

    def test_cache_pop(self):
        """Test removing a key from cache, including one that is absent."""
        cache = SimpleTTLCache[str](ttl=60)
        cache.set("key1", "value1")
        cache.set("key2", "value2")

        cache.pop("key1")
        cache.pop("nonexistent")

        assert cache.get("key1") is None
        assert cache.get("key2") == "value2"

    def test_get_or_load_loads_once(self):
        """Test that the loader runs only on a miss."""
        cache = SimpleTTLCache[int](ttl=60)
        calls = []

        def loader():
            calls.append(1)
            return 42

        assert cache.get_or_load("answer", loader) == 42
        assert cache.get_or_load("answer", loader) == 42
        assert len(calls) == 1

    def test_get_or_load_does_not_cache_none(self):
        """Test that a missing value is looked up again next time."""
        cache = SimpleTTLCache[int](ttl=60)

        assert cache.get_or_load("missing", lambda: None) is None
        assert cache.get_or_load("missing", lambda: 5) == 5

    def test_room_key(self):
        """Test room cache keys."""
        assert room_key(12) == "room:12"
