"""Tests for report caches."""

from __future__ import annotations

from unittest.mock import Mock

from peanut.attribution.cache import NullCache, TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Tests for TTLCache."""

    def test_computes_once(self):
        """Test value is reused within the ttl."""
        cache = TTLCache(clock=FakeClock())
        compute = Mock(return_value="report")

        assert cache.get_or_compute("k", 60, compute) == "report"
        assert cache.get_or_compute("k", 60, compute) == "report"
        compute.assert_called_once()

    def test_expires(self):
        """Test entries are recomputed after the ttl."""
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        compute = Mock(side_effect=["old", "new"])

        cache.get_or_compute("k", 60, compute)
        clock.now = 61
        assert cache.get_or_compute("k", 60, compute) == "new"

    def test_zero_ttl_not_stored(self):
        """Test ttl of zero disables caching."""
        cache = TTLCache(clock=FakeClock())
        cache.get_or_compute("k", 0, lambda: 1)
        assert len(cache) == 0

    def test_invalidate_prefix(self):
        """Test prefix invalidation drops only matching keys."""
        cache = TTLCache(clock=FakeClock())
        cache.get_or_compute("attribution:report:linear", 60, lambda: 1)
        cache.get_or_compute("attribution:report:first_touch", 60, lambda: 2)
        cache.get_or_compute("other", 60, lambda: 3)

        assert cache.invalidate_prefix("attribution:report:") == 2
        assert len(cache) == 1

    def test_invalidate(self):
        """Test single key invalidation."""
        cache = TTLCache(clock=FakeClock())
        compute = Mock(return_value=1)
        cache.get_or_compute("k", 60, compute)
        cache.invalidate("k")
        cache.invalidate("missing")
        cache.get_or_compute("k", 60, compute)

        assert compute.call_count == 2

    def test_invalidated_during_compute_not_stored(self):
        """Test a value built before an invalidation is returned but not cached."""
        cache = TTLCache(clock=FakeClock())

        def build():
            cache.invalidate_prefix("attribution:report:")
            return "stale"

        assert cache.get_or_compute("attribution:report:linear", 60, build) == "stale"
        assert len(cache) == 0
        assert cache.get_or_compute("attribution:report:linear", 60, lambda: "fresh") == "fresh"

    def test_empty_cache_is_falsy(self):
        """Test an empty cache has no length, so callers must check for None."""
        cache = TTLCache()
        assert len(cache) == 0
        assert not cache


class TestNullCache:
    """Tests for NullCache."""

    def test_always_computes(self):
        """Test nothing is retained."""
        cache = NullCache()
        compute = Mock(return_value=1)
        cache.get_or_compute("k", 60, compute)
        cache.get_or_compute("k", 60, compute)

        assert compute.call_count == 2
        assert cache.invalidate_prefix("k") == 0
