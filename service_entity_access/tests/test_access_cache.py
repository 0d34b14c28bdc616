"""
Unit tests for the entity access decision cache.
"""

import pytest

from service_entity_access.app.cache.access_cache import AccessCache
from service_entity_access.app.policies.models import CacheKey, EntityAccessResult


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class TestAccessCache:
    """Test cases for AccessCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        """Create a small cache driven by the fake clock."""
        return AccessCache(max_size=3, ttl_seconds=300, clock=clock)

    def _result(self, clock, granted=True, reason=None):
        return EntityAccessResult(granted=granted, reason=reason, evaluated_at=clock())

    def test_get_miss(self, cache):
        """Test lookup of an absent key."""
        assert cache.get(CacheKey("user-1", "worker.view", "w-1")) is None

    def test_set_then_get(self, cache, clock):
        """Test a stored decision is returned as-is."""
        key = CacheKey("user-1", "worker.view", "w-1")
        result = self._result(clock, reason="Matched access rule")
        cache.set(key, result)

        assert cache.get(key) is result

    def test_hit_just_before_ttl(self, cache, clock):
        """Test an entry is still served just inside the TTL."""
        key = CacheKey("user-1", "worker.view", "w-1")
        result = self._result(clock)
        cache.set(key, result)

        clock.advance(300 - 0.001)

        assert cache.get(key) is result

    def test_miss_just_after_ttl(self, cache, clock):
        """Test an expired entry is a miss and is evicted."""
        key = CacheKey("user-1", "worker.view", "w-1")
        cache.set(key, self._result(clock))

        clock.advance(300 + 0.001)

        assert cache.get(key) is None
        assert key not in cache
        assert len(cache) == 0

    def test_capacity_evicts_least_recently_used(self, cache, clock):
        """Test inserting max_size + 1 keys evicts exactly the oldest one."""
        keys = [CacheKey("user-1", "worker.view", f"w-{i}") for i in range(4)]
        for key in keys:
            cache.set(key, self._result(clock))

        assert len(cache) == 3
        assert keys[0] not in cache
        assert all(key in cache for key in keys[1:])

    def test_get_refreshes_recency(self, cache, clock):
        """Test a read protects the key from the next eviction."""
        k1, k2, k3, k4 = (CacheKey("user-1", "worker.view", f"w-{i}") for i in range(1, 5))
        for key in (k1, k2, k3):
            cache.set(key, self._result(clock))

        assert cache.get(k1) is not None
        cache.set(k4, self._result(clock))

        assert k1 in cache
        assert k2 not in cache
        assert k3 in cache
        assert k4 in cache

    def test_set_existing_key_replaces_without_eviction(self, cache, clock):
        """Test overwriting a key replaces the value wholesale and evicts nothing."""
        keys = [CacheKey("user-1", "worker.view", f"w-{i}") for i in range(3)]
        for key in keys:
            cache.set(key, self._result(clock, granted=True))

        replacement = self._result(clock, granted=False, reason="No matching access rules")
        cache.set(keys[0], replacement)

        assert len(cache) == 3
        assert cache.get(keys[0]) is replacement

    def test_invalidate_by_principal(self, cache, clock):
        """Test invalidating a principal removes all and only its entries."""
        cache.set(CacheKey("user-1", "worker.view", "w-1"), self._result(clock))
        cache.set(CacheKey("user-1", "employer.view", "e-1"), self._result(clock))
        cache.set(CacheKey("user-2", "worker.view", "w-1"), self._result(clock))

        removed = cache.invalidate(principal_id="user-1")

        assert removed == 2
        assert len(cache) == 1
        assert CacheKey("user-2", "worker.view", "w-1") in cache

    def test_invalidate_matches_all_given_fields(self, cache, clock):
        """Test every specified field must match."""
        cache.set(CacheKey("user-1", "worker.view", "w-1"), self._result(clock))
        cache.set(CacheKey("user-1", "worker.view", "w-2"), self._result(clock))
        cache.set(CacheKey("user-2", "worker.view", "w-1"), self._result(clock))

        removed = cache.invalidate(policy_id="worker.view", entity_id="w-1")

        assert removed == 2
        assert list(cache._entries) == [CacheKey("user-1", "worker.view", "w-2")]

    def test_invalidate_without_fields_removes_nothing(self, cache, clock):
        """Test an empty pattern is a no-op, not a clear."""
        cache.set(CacheKey("user-1", "worker.view", "w-1"), self._result(clock))

        assert cache.invalidate() == 0
        assert len(cache) == 1

    def test_keys_with_delimiters_do_not_collide(self, cache, clock):
        """Test ids containing colons stay distinct."""
        first = CacheKey("a:b", "c", "d")
        second = CacheKey("a", "b:c", "d")
        cache.set(first, self._result(clock, granted=True))
        cache.set(second, self._result(clock, granted=False))

        assert cache.get(first).granted is True
        assert cache.get(second).granted is False
        assert cache.invalidate(principal_id="a") == 1

    def test_clear(self, cache, clock):
        """Test clear drops everything and reports the count."""
        cache.set(CacheKey("user-1", "worker.view", "w-1"), self._result(clock))
        cache.set(CacheKey("user-2", "worker.view", "w-1"), self._result(clock))

        assert cache.clear() == 2
        assert len(cache) == 0

    def test_stats(self, cache, clock):
        """Test stats report size, capacity and TTL in milliseconds."""
        cache.set(CacheKey("user-1", "worker.view", "w-1"), self._result(clock))

        assert cache.stats() == {"size": 1, "max_size": 3, "ttl_ms": 300000}

    @pytest.mark.parametrize("kwargs", [{"max_size": 0}, {"ttl_seconds": 0}, {"ttl_seconds": -1}])
    def test_rejects_non_positive_limits(self, kwargs):
        """Test invalid capacity or TTL is refused."""
        with pytest.raises(ValueError):
            AccessCache(**kwargs)


class TestCacheKey:
    """Test cases for CacheKey formatting."""

    def test_format(self):
        assert CacheKey("user-1", "worker.view", "w-1").format() == "user-1:worker.view:w-1"

    def test_parse(self):
        assert CacheKey.parse("user-1:worker.view:w-1") == CacheKey("user-1", "worker.view", "w-1")

    def test_parse_rejects_ambiguous_keys(self):
        """Test strings that do not split into three parts are refused."""
        assert CacheKey.parse("user-1:worker.view") is None
        assert CacheKey.parse("a:b:c:d") is None
