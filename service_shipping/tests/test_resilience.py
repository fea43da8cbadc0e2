"""
Unit tests for the circuit breaker and retry helpers.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from shared.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitBreakerOpenException,
    CircuitBreakerState,
)
from shared.retry import RetryConfig, RetryError, retry_on_exception


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class Boom(Exception):
    pass


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, expected_exception=Boom,
                              name="test", clock=clock)

    async def fail(self):
        raise Boom("carrier down")

    async def succeed(self):
        return "ok"

    @pytest.mark.asyncio
    async def test_opens_after_consecutive_failures(self, breaker):
        for _ in range(2):
            with pytest.raises(Boom):
                await breaker.call(self.fail)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException) as exc_info:
            await breaker.call(self.succeed)
        assert exc_info.value.retry_in == 30.0

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        with pytest.raises(Boom):
            await breaker.call(self.fail)
        await breaker.call(self.succeed)
        with pytest.raises(Boom):
            await breaker.call(self.fail)

        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_unexpected_exceptions_do_not_count(self, breaker):
        async def other():
            raise KeyError("nope")

        for _ in range(3):
            with pytest.raises(KeyError):
                await breaker.call(other)

        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_probe_closes_on_success(self, breaker, clock):
        for _ in range(2):
            with pytest.raises(Boom):
                await breaker.call(self.fail)

        clock.now += 30
        assert breaker.state == CircuitBreakerState.HALF_OPEN
        assert await breaker.call(self.succeed) == "ok"
        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens(self, breaker, clock):
        for _ in range(2):
            with pytest.raises(Boom):
                await breaker.call(self.fail)

        clock.now += 30
        with pytest.raises(Boom):
            await breaker.call(self.fail)

        assert breaker.is_open()
        assert breaker.get_state()["retry_in_seconds"] == 30.0

    @pytest.mark.asyncio
    async def test_call_started_while_closed_does_not_admit_second_trial_call(self, breaker, clock):
        release_slow = asyncio.Event()
        release_trial = asyncio.Event()

        async def slow():
            await release_slow.wait()
            raise KeyError("late answer")

        async def trial():
            await release_trial.wait()
            return "ok"

        slow_call = asyncio.create_task(breaker.call(slow))
        await asyncio.sleep(0)
        for _ in range(2):
            with pytest.raises(Boom):
                await breaker.call(self.fail)

        clock.now += 30
        trial_call = asyncio.create_task(breaker.call(trial))
        await asyncio.sleep(0)

        release_slow.set()
        with pytest.raises(KeyError):
            await slow_call

        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(self.succeed)

        release_trial.set()
        assert await trial_call == "ok"
        assert breaker.state == CircuitBreakerState.CLOSED

    def test_manager_returns_same_breaker(self):
        manager = CircuitBreakerManager()

        first = manager.get_circuit_breaker("carrier_rates")
        assert manager.get_circuit_breaker("carrier_rates") is first
        assert set(manager.get_all_states()) == {"carrier_rates"}


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        sleep = AsyncMock()
        attempts = []

        @retry_on_exception((Boom,), RetryConfig(max_attempts=3, base_delay=1.0, jitter=0), sleep=sleep)
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise Boom("transient")
            return "done"

        assert await flaky() == "done"
        assert len(attempts) == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_retry_error(self):
        @retry_on_exception((Boom,), RetryConfig(max_attempts=2, jitter=0), sleep=AsyncMock())
        async def broken():
            raise Boom("still down")

        with pytest.raises(RetryError) as exc_info:
            await broken()

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, Boom)

    @pytest.mark.asyncio
    async def test_other_exceptions_are_not_retried(self):
        sleep = AsyncMock()

        @retry_on_exception((Boom,), RetryConfig(max_attempts=3), sleep=sleep)
        async def wrong():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await wrong()
        sleep.assert_not_awaited()

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=0)

        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]
