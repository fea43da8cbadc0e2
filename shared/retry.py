"""
Retry with exponential backoff for transient carrier failures.
"""

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Backoff settings: attempt ``n`` waits ``base_delay * multiplier**(n-1)``, capped."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.5,
                 max_delay: float = 5.0,
                 multiplier: float = 2.0,
                 jitter: float = 0.1):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(-delay * self.jitter, delay * self.jitter)
        return max(0.0, delay)


class RetryError(Exception):
    """Every attempt failed; ``last_exception`` is the final failure."""

    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None,
                       sleep: Optional[Callable[[float], Awaitable[Any]]] = None) -> Callable:
    """Retry an async callable while it raises one of ``exceptions``.

    Other exceptions propagate on the first occurrence. When attempts run out
    ``RetryError`` is raised from the last failure.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        logger = get_logger(f"shipping.retry.{func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            pause = sleep or asyncio.sleep
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == config.max_attempts:
                        logger.error(
                            "Giving up after retries",
                            attempts=attempt,
                            error=str(e),
                        )
                        raise RetryError(
                            f"{func.__name__} failed after {attempt} attempts",
                            last_exception=e,
                            attempts=attempt,
                        ) from e

                    delay = config.delay_for(attempt)
                    logger.warning(
                        "Transient failure, retrying",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        delay=round(delay, 3),
                        error=str(e),
                    )
                    await pause(delay)
                else:
                    if attempt > 1:
                        logger.info("Succeeded after retry", attempt=attempt)
                    return result

        return wrapper

    return decorator
