"""
Circuit breakers guarding calls to the carrier API.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Tuple, Type, Union

from shared.logging import get_logger

ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Calls flow to the carrier
    OPEN = "open"            # Calls are refused without touching the carrier
    HALF_OPEN = "half_open"  # One probe call decides whether to close again


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling the carrier while the breaker is open."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(f"Circuit breaker '{name}' is open")
        self.name = name
        self.retry_in = retry_in


class CircuitBreaker:
    """Counts consecutive carrier failures and stops calling once they pile up.

    Only ``expected_exception`` counts as a failure. Anything else (a 4xx
    answer mapped to an error by the caller, a cancelled task) passes through
    without changing the breaker state.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 expected_exception: ExceptionTypes = Exception,
                 name: str = "carrier",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name
        self.logger = get_logger(f"shipping.circuit_breaker.{name}")
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False
        self._total_failures = 0
        self._total_rejections = 0

    @property
    def state(self) -> CircuitBreakerState:
        if self._state == CircuitBreakerState.OPEN and self._retry_in() <= 0:
            return CircuitBreakerState.HALF_OPEN
        return self._state

    def _retry_in(self) -> float:
        return max(0.0, self._opened_at + self.recovery_timeout - self._clock())

    def _admit(self) -> bool:
        """Let a call through or raise; returns True when the call is the half-open probe."""
        state = self.state
        if state == CircuitBreakerState.CLOSED:
            return False
        if state == CircuitBreakerState.HALF_OPEN and not self._probe_in_flight:
            self._state = CircuitBreakerState.HALF_OPEN
            self._probe_in_flight = True
            self.logger.info("Circuit breaker half-open, probing carrier")
            return True
        self._total_rejections += 1
        raise CircuitBreakerOpenException(self.name, self._retry_in())

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` unless the breaker is open."""
        is_probe = self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception as e:
            self._on_failure(e)
            raise
        finally:
            if is_probe:
                self._probe_in_flight = False

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker closed after successful probe")
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0

    def _on_failure(self, error: BaseException) -> None:
        self._consecutive_failures += 1
        self._total_failures += 1

        reopen = self._state == CircuitBreakerState.HALF_OPEN
        if reopen or (
            self._state == CircuitBreakerState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()
            self.logger.warning(
                "Circuit breaker opened",
                consecutive_failures=self._consecutive_failures,
                threshold=self.failure_threshold,
                error=str(error),
            )

    def reset(self) -> None:
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._probe_in_flight = False

    def is_open(self) -> bool:
        return self.state == CircuitBreakerState.OPEN

    def get_state(self) -> Dict[str, Any]:
        """Snapshot for the health endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "total_failures": self._total_failures,
            "rejected_calls": self._total_rejections,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "retry_in_seconds": round(self._retry_in(), 3) if self._state == CircuitBreakerState.OPEN else 0.0,
        }


class CircuitBreakerManager:
    """Owns the breakers of one service instance, keyed by name."""

    def __init__(self):
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.logger = get_logger("shipping.circuit_breakers")

    def get_circuit_breaker(self,
                            name: str,
                            failure_threshold: int = 5,
                            recovery_timeout: float = 30.0,
                            expected_exception: ExceptionTypes = Exception) -> CircuitBreaker:
        """Return the breaker called ``name``, creating it on first use."""
        breaker = self.circuit_breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                expected_exception=expected_exception,
                name=name,
            )
            self.circuit_breakers[name] = breaker
            self.logger.info("Created circuit breaker", name=name, failure_threshold=failure_threshold)
        return breaker

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_state() for name, breaker in self.circuit_breakers.items()}
