"""
Property-based tests for lookup cache invariants.

Tests that the cache honours its size bound, its TTL and the
case-insensitivity of its keys across random access sequences.
"""

from hypothesis import given, strategies as st

from adrealm.ad.cache import CacheKey, LookupCache
from adrealm.core.types import GroupLookupStrategy


# =============================================================================
# STRATEGIES
# =============================================================================

key_strategy = st.sampled_from(["a", "b", "c", "d", "e", "f"])

# (key, seconds to advance the clock before the access)
access_strategy = st.lists(
    st.tuples(key_strategy, st.integers(min_value=0, max_value=30)),
    max_size=40,
)

name_strategy = st.from_regex(r"[A-Za-z][A-Za-z0-9]{0,12}", fullmatch=True)


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# CACHE PROPERTIES
# =============================================================================


class TestCacheProperties:
    """Property-based tests for LookupCache."""

    @given(st.integers(min_value=1, max_value=5), access_strategy)
    def test_size_bound_holds(self, size, accesses):
        """Property: the cache never holds more than ``size`` entries."""
        clock = Clock()
        cache = LookupCache(size=size, ttl=60, clock=clock)
        for key, advance in accesses:
            clock.now += advance
            cache.get_or_compute(key, lambda: key)
            assert cache.entry_count <= size

    @given(access_strategy)
    def test_values_never_older_than_ttl(self, accesses):
        """Property: a returned value was computed less than ``ttl`` ago."""
        clock = Clock()
        cache = LookupCache(size=10, ttl=45, clock=clock)
        for key, advance in accesses:
            clock.now += advance
            computed_at = cache.get_or_compute(key, lambda: clock.now)
            assert clock.now - computed_at < 45

    @given(access_strategy)
    def test_disabled_cache_computes_every_time(self, accesses):
        """Property: size 0 means one computation per access."""
        cache = LookupCache(size=0, ttl=60)
        calls = []
        for key, _ in accesses:
            cache.get_or_compute(key, lambda: calls.append(key))
        assert len(calls) == len(accesses)

    @given(name_strategy, name_strategy)
    def test_key_case_insensitive(self, domain, principal):
        """Property: keys differing only by case are equal."""
        lower = CacheKey(domain.lower(), principal.lower(), GroupLookupStrategy.AUTO)
        upper = CacheKey(domain.upper(), principal.upper(), GroupLookupStrategy.AUTO)
        assert lower == upper
