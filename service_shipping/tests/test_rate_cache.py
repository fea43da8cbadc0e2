"""
Unit tests for the rate cache.
"""

import pytest
from prometheus_client import CollectorRegistry

from service_shipping.app.caching.rate_cache import RateCache, make_cache_key
from service_shipping.app.domain.models import RateOption
from shared.metrics import MetricsCollector


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


RATES = [RateOption(service_id="PRIORITY_MAIL", display_name="USPS Priority Mail", price_cents=850)]


class TestRateCache:
    """Test cases for RateCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return RateCache(ttl_seconds=300, clock=clock)

    def test_cache_key_layout(self):
        assert make_cache_key("66217", "66215", "cart_1") == "66217-66215-cart_1"

    def test_miss_on_unknown_key(self, cache):
        assert cache.get("nope") is None

    def test_hit_within_ttl(self, cache, clock):
        cache.put("key", RATES)
        clock.now += 300

        entry = cache.get("key")

        assert entry is not None
        assert entry.rates == tuple(RATES)
        assert entry.fetched_at == 0.0

    def test_expires_lazily_after_ttl(self, cache, clock):
        cache.put("key", RATES)
        clock.now += 300.5

        assert cache.get("key") is None

    def test_put_replaces_entry_wholesale(self, cache, clock):
        first = cache.put("key", RATES)
        clock.now += 10
        second = cache.put("key", [], degraded=True)

        assert cache.get("key") is second
        assert first.rates == tuple(RATES)
        assert second.degraded is True

    def test_sweep_removes_only_expired(self, cache, clock):
        cache.put("old", RATES)
        clock.now += 200
        cache.put("new", RATES)
        clock.now += 150

        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("new") is not None

    def test_invalidate_and_clear(self, cache):
        cache.put("a", RATES)
        cache.put("b", RATES)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_hits_and_misses_are_counted(self, clock):
        metrics = MetricsCollector("shipping", registry=CollectorRegistry())
        cache = RateCache(ttl_seconds=300, clock=clock, metrics=metrics)

        cache.get("key")
        cache.put("key", RATES)
        cache.get("key")
        cache.get("key")

        assert metrics.registry.get_sample_value("rate_cache_misses_total") == 1.0
        assert metrics.registry.get_sample_value("rate_cache_hits_total") == 2.0
