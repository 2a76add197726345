"""
Tests for the TTL cache.
"""
import pytest

from creator_platform.core.cache import TTLCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestTTLCache:
    """Test suite for TTLCache."""

    @pytest.mark.unit
    def test_entry_expires_after_ttl(self, clock: FakeClock) -> None:
        """set(k, v, 0.1) is gone 0.15s later."""
        cache = TTLCache(clock=clock)
        cache.set("k", "v", ttl=0.1)

        assert cache.get("k") == "v"
        clock.advance(0.15)
        assert cache.get("k") is None
        assert cache.stats()["size"] == 0

    @pytest.mark.unit
    def test_entry_live_just_before_ttl(self, clock: FakeClock) -> None:
        """An entry is served until its ttl has fully elapsed."""
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("k", 42)

        clock.advance(9.99)
        assert cache.get("k") == 42
        clock.advance(0.02)
        assert cache.get("k", "gone") == "gone"

    @pytest.mark.unit
    def test_set_replaces_entry_and_resets_age(self, clock: FakeClock) -> None:
        """A second set restarts the entry's lifetime."""
        cache = TTLCache(default_ttl=1, clock=clock)
        cache.set("k", "old")
        clock.advance(0.8)
        cache.set("k", "new")
        clock.advance(0.8)

        assert cache.get("k") == "new"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_or_fetch_caches_falsy_values(self, clock: FakeClock) -> None:
        """A cached empty list is a hit, not a miss."""
        cache = TTLCache(clock=clock)
        calls = 0

        async def fetch() -> list:
            nonlocal calls
            calls += 1
            return []

        assert await cache.get_or_fetch("empty", fetch) == []
        assert await cache.get_or_fetch("empty", fetch) == []
        assert calls == 1
        assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_or_fetch_refetches_after_expiry(self, clock: FakeClock) -> None:
        """An expired entry goes back to the fetcher."""
        cache = TTLCache(clock=clock)
        values = iter([1, 2])

        async def fetch() -> int:
            return next(values)

        assert await cache.get_or_fetch("n", fetch, ttl=5) == 1
        clock.advance(5)
        assert await cache.get_or_fetch("n", fetch, ttl=5) == 2

    @pytest.mark.unit
    def test_invalidate_by_prefix(self) -> None:
        """Only keys under the prefix are dropped."""
        cache = TTLCache()
        cache.set("creators:list:page:1", "a")
        cache.set("creators:featured:6", "b")
        cache.set("media:1", "c")

        assert cache.invalidate("creators:") == 2
        assert cache.get("media:1") == "c"
        assert cache.get("creators:featured:6") is None

    @pytest.mark.unit
    def test_invalidate_all(self) -> None:
        """No prefix clears everything."""
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.invalidate() == 2
        assert cache.stats()["size"] == 0

    @pytest.mark.unit
    def test_rejects_non_positive_ttl(self) -> None:
        """A zero or negative ttl is a programming error."""
        with pytest.raises(ValueError):
            TTLCache(default_ttl=0)
        with pytest.raises(ValueError):
            TTLCache().set("k", "v", ttl=-1)

    @pytest.mark.unit
    def test_make_key_skips_none(self) -> None:
        """Keys are colon-joined without None parts."""
        assert TTLCache.make_key("creators", "list", None, 2) == "creators:list:2"
