"""
Unit tests for the result cache.

Tests TTL expiry with an injected clock and error propagation.
"""

import pytest

from agent_analytics.core.cache import ResultCache


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class TestResultCache:
    """Test memoization and expiry."""

    def test_miss_then_hit(self):
        """The second lookup inside the TTL is served from the cache."""
        cache = ResultCache(clock=FakeClock())
        calls = []

        def compute():
            calls.append(1)
            return {"value": 42}

        first = cache.get_or_compute("metrics:org_a", 60000, compute)
        second = cache.get_or_compute("metrics:org_a", 60000, compute)

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.value == {"value": 42}
        assert len(calls) == 1

    def test_expiry(self):
        """Entries expire once the TTL has fully elapsed."""
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        cache.get_or_compute("k", 1000, lambda: "old")

        clock.advance(999)
        assert cache.get_or_compute("k", 1000, lambda: "new").value == "old"

        clock.advance(1)
        result = cache.get_or_compute("k", 1000, lambda: "new")
        assert result.cache_hit is False
        assert result.value == "new"

    def test_keys_are_independent(self):
        """Different keys never share values."""
        cache = ResultCache(clock=FakeClock())

        cache.get_or_compute("metrics:org_a", 1000, lambda: "a")
        result = cache.get_or_compute("metrics:org_b", 1000, lambda: "b")

        assert result.cache_hit is False
        assert result.value == "b"
        assert len(cache) == 2

    def test_failed_compute_not_cached(self):
        """Exceptions propagate and leave no entry behind."""
        cache = ResultCache(clock=FakeClock())

        def boom():
            raise RuntimeError("store down")

        with pytest.raises(RuntimeError, match="store down"):
            cache.get_or_compute("k", 1000, boom)
        assert len(cache) == 0

    def test_set_and_clear(self):
        """Seeded entries are hits until cleared."""
        cache = ResultCache(clock=FakeClock())
        cache.set("k", "seeded", 1000)

        assert cache.get_or_compute("k", 1000, lambda: "computed").cache_hit is True

        cache.clear()
        assert len(cache) == 0
        assert cache.get_or_compute("k", 1000, lambda: "computed").value == "computed"

    def test_zero_ttl_never_hits(self):
        """A zero TTL disables caching."""
        cache = ResultCache(clock=FakeClock())
        cache.get_or_compute("k", 0, lambda: 1)

        assert cache.get_or_compute("k", 0, lambda: 2).value == 2
