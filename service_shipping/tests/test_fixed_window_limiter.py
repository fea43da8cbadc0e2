"""
Unit tests for the fixed-window rate limiter.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import Response
from prometheus_client import CollectorRegistry

from service_shipping.app.ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    RateLimitMiddleware,
    RateLimitPolicy,
    policies_for_profile,
)
from shared.errors import RateLimitExceeded
from shared.metrics import MetricsCollector


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def rate_limiter(self, clock):
        return FixedWindowRateLimiter(
            {"rates": RateLimitPolicy(window_seconds=60, max_requests=3)},
            clock=clock,
        )

    def test_burst_allows_exactly_max_requests(self, rate_limiter):
        results = [rate_limiter.allow("rates", "1.2.3.4") for _ in range(5)]

        assert results == [True, True, True, False, False]

    def test_new_window_resets_counter(self, rate_limiter, clock):
        for _ in range(5):
            rate_limiter.allow("rates", "1.2.3.4")

        clock.now += 60
        decision = rate_limiter.check("rates", "1.2.3.4")

        assert decision.allowed is True
        assert rate_limiter._entries[("rates", "1.2.3.4")].count == 1
        assert decision.remaining == 2

    def test_identities_are_independent(self, rate_limiter):
        for _ in range(3):
            rate_limiter.allow("rates", "a")

        assert rate_limiter.allow("rates", "a") is False
        assert rate_limiter.allow("rates", "b") is True

    def test_denied_decision_reports_retry_after(self, rate_limiter, clock):
        for _ in range(3):
            rate_limiter.allow("rates", "a")
        clock.now += 20.5

        decision = rate_limiter.check("rates", "a")

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.retry_after == 40

    def test_sweep_drops_expired_windows(self, rate_limiter, clock):
        rate_limiter.allow("rates", "a")
        clock.now += 30
        rate_limiter.allow("rates", "b")
        clock.now += 30

        assert rate_limiter.sweep() == 1
        assert len(rate_limiter) == 1

    def test_disabled_limiter_always_allows(self, clock):
        rate_limiter = FixedWindowRateLimiter(
            {"rates": RateLimitPolicy(window_seconds=60, max_requests=1)},
            enabled=False,
            clock=clock,
        )

        assert all(rate_limiter.allow("rates", "a") for _ in range(10))
        assert len(rate_limiter) == 0

    def test_unknown_scope_is_a_configuration_error(self, rate_limiter):
        with pytest.raises(ValueError):
            rate_limiter.check("uploads", "a")

    def test_denials_are_counted(self, clock):
        metrics = MetricsCollector("shipping", registry=CollectorRegistry())
        rate_limiter = FixedWindowRateLimiter(
            {"rates": RateLimitPolicy(window_seconds=60, max_requests=1)},
            clock=clock,
            metrics=metrics,
        )

        rate_limiter.allow("rates", "a")
        rate_limiter.allow("rates", "a")

        assert metrics.registry.get_sample_value("rate_limit_hits_total", {"scope": "rates"}) == 1.0


class TestRateLimitProfiles:
    """Test cases for configured quota profiles."""

    def test_strict_is_tighter_than_permissive(self):
        strict = policies_for_profile("strict")
        permissive = policies_for_profile("permissive")

        assert set(strict) == {"auth", "reviews", "rates", "api"}
        for scope, policy in strict.items():
            assert policy.max_requests <= permissive[scope].max_requests

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            policies_for_profile("lenient")


class TestRateLimitMiddleware:
    """Test cases for RateLimitMiddleware."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def middleware(self, clock):
        rate_limiter = FixedWindowRateLimiter(
            {"api": RateLimitPolicy(window_seconds=60, max_requests=2)},
            clock=clock,
        )
        return RateLimitMiddleware(rate_limiter)

    def make_request(self, headers=None, host="10.0.0.9"):
        request = MagicMock()
        request.headers = headers or {}
        request.client.host = host
        return request

    def test_client_id_prefers_actor(self):
        request = self.make_request({"X-Actor-Id": "cus_1", "X-Forwarded-For": "1.1.1.1"})
        assert RateLimitMiddleware.get_client_id(request) == "cus_1"

    def test_client_id_uses_first_forwarded_address(self):
        request = self.make_request({"X-Forwarded-For": "1.1.1.1, 2.2.2.2", "X-Real-IP": "3.3.3.3"})
        assert RateLimitMiddleware.get_client_id(request) == "1.1.1.1"

    def test_client_id_falls_back_to_real_ip_then_peer(self):
        assert RateLimitMiddleware.get_client_id(self.make_request({"X-Real-IP": "3.3.3.3"})) == "3.3.3.3"
        assert RateLimitMiddleware.get_client_id(self.make_request()) == "10.0.0.9"

    def test_enforce_sets_quota_headers(self, middleware):
        response = Response()

        middleware.enforce(self.make_request(), response, "api")

        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert response.headers["X-RateLimit-Reset"] == "2023-11-14T22:14:20Z"

    def test_enforce_raises_when_exhausted(self, middleware):
        request = self.make_request()
        for _ in range(2):
            middleware.enforce(request, Response(), "api")

        with pytest.raises(RateLimitExceeded) as exc_info:
            middleware.enforce(request, Response(), "api")

        assert exc_info.value.retry_after == 60
        assert exc_info.value.details["scope"] == "api"
