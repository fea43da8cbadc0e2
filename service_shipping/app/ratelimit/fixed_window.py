"""
Fixed-window rate limiter for the shipping service.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

from fastapi import Request, Response

from shared.errors import RateLimitExceeded
from shared.logging import get_logger, set_client_context

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: float
    max_requests: int


# Quotas per scope. "permissive" is meant for local development, "strict" for
# anything customer facing.
RATE_LIMIT_PROFILES: Dict[str, Dict[str, RateLimitPolicy]] = {
    "permissive": {
        "auth": RateLimitPolicy(window_seconds=60, max_requests=1000),
        "reviews": RateLimitPolicy(window_seconds=60, max_requests=100),
        "rates": RateLimitPolicy(window_seconds=60, max_requests=1000),
        "api": RateLimitPolicy(window_seconds=60, max_requests=10000),
    },
    "strict": {
        "auth": RateLimitPolicy(window_seconds=15 * 60, max_requests=5),
        "reviews": RateLimitPolicy(window_seconds=60 * 60, max_requests=3),
        "rates": RateLimitPolicy(window_seconds=60, max_requests=30),
        "api": RateLimitPolicy(window_seconds=60, max_requests=100),
    },
}


def policies_for_profile(profile: str) -> Dict[str, RateLimitPolicy]:
    try:
        return dict(RATE_LIMIT_PROFILES[profile])
    except KeyError:
        raise ValueError(f"Unknown rate limit profile: {profile!r}") from None


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int


class FixedWindowRateLimiter:
    """Per ``(scope, identity)`` request counter over fixed windows.

    The first request of a window creates the entry, later ones increment it
    and are denied once the count exceeds the scope's maximum. Once the window
    ends the entry is replaced rather than incremented.
    """

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy],
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.policies = dict(policies)
        self.enabled = enabled
        self.metrics = metrics
        self.logger = get_logger("shipping.rate_limiter")
        self._clock = clock
        self._entries: Dict[Tuple[str, str], RateLimitEntry] = {}
        self._lock = threading.Lock()

    def _policy(self, scope: str) -> RateLimitPolicy:
        try:
            return self.policies[scope]
        except KeyError:
            raise ValueError(f"No rate limit policy configured for scope {scope!r}") from None

    def check(self, scope: str, identity: str) -> RateLimitDecision:
        policy = self._policy(scope)
        now = self._clock()

        if not self.enabled:
            return RateLimitDecision(
                allowed=True,
                limit=policy.max_requests,
                remaining=policy.max_requests,
                reset_at=now + policy.window_seconds,
                retry_after=0,
            )

        key = (scope, identity)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now >= entry.window_reset_at:
                entry = RateLimitEntry(count=1, window_reset_at=now + policy.window_seconds)
                self._entries[key] = entry
            else:
                entry.count += 1
            count = entry.count
            reset_at = entry.window_reset_at

        allowed = count <= policy.max_requests
        decision = RateLimitDecision(
            allowed=allowed,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            reset_at=reset_at,
            retry_after=max(0, math.ceil(reset_at - now)),
        )

        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                scope=scope,
                identity=identity,
                count=count,
                limit=policy.max_requests,
            )
            if self.metrics is not None:
                self.metrics.increment_counter("rate_limit_hits_total", scope=scope)
        return decision

    def allow(self, scope: str, identity: str) -> bool:
        return self.check(scope, identity).allowed

    def sweep(self) -> int:
        """Remove entries whose window has ended."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.window_reset_at]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.debug("Swept expired rate limit entries", removed=len(expired))
        return len(expired)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep forever; meant to run as a background task."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def reset(self, scope: str, identity: str) -> bool:
        with self._lock:
            return self._entries.pop((scope, identity), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "tracked_keys": len(self),
            "scopes": {
                scope: {"window_seconds": policy.window_seconds, "max_requests": policy.max_requests}
                for scope, policy in self.policies.items()
            },
        }


class RateLimitMiddleware:
    """Applies the limiter to FastAPI requests."""

    def __init__(self, rate_limiter: FixedWindowRateLimiter):
        self.rate_limiter = rate_limiter

    def enforce(self, request: Request, response: Response, scope: str) -> RateLimitDecision:
        """Count the request, set quota headers, raise ``RateLimitExceeded`` when denied."""
        client_id = self.get_client_id(request)
        set_client_context(client_id)
        decision = self.rate_limiter.check(scope, client_id)
        if not decision.allowed:
            raise RateLimitExceeded(retry_after=decision.retry_after, details={"scope": scope})
        self.set_rate_limit_headers(response, decision)
        return decision

    def dependency(self, scope: str):
        """FastAPI dependency enforcing ``scope`` for a route."""
        async def _enforce(request: Request, response: Response) -> RateLimitDecision:
            return self.enforce(request, response, scope)

        return _enforce

    @staticmethod
    def set_rate_limit_headers(response: Response, decision: RateLimitDecision) -> None:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = (
            datetime.fromtimestamp(decision.reset_at, tz=timezone.utc)
            .isoformat(timespec="seconds")
            .replace("+00:00", "Z")
        )

    @staticmethod
    def get_client_id(request: Request) -> str:
        """Authenticated actor first, then proxy headers, then the peer address."""
        actor_id = request.headers.get("X-Actor-Id")
        if actor_id:
            return actor_id

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"
