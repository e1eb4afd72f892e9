"""
Retry-with-backoff for upstream calls.

Every adapter request goes through ``with_retry``; only
``TransientNetworkError`` is retried. Once attempts are exhausted the last
error is re-raised as ``SourceUnavailable``.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional, TypeVar

from .exceptions import SourceUnavailable, TransientNetworkError

logger = logging.getLogger(__name__)

R = TypeVar("R")


class LinearBackoff:
    """Delay grows by ``step`` seconds per failed attempt (step, 2*step, ...)."""

    def __init__(self, step: float = 5.0, max_delay: Optional[float] = None):
        self.step = step
        self.max_delay = max_delay

    def delay(self, attempt: int) -> float:
        value = self.step * attempt
        if self.max_delay is not None:
            value = min(value, self.max_delay)
        return value

    def __repr__(self) -> str:
        return f"LinearBackoff(step={self.step}, max_delay={self.max_delay})"


class FixedBackoff:
    """Same delay after every failed attempt."""

    def __init__(self, seconds: float = 2.0):
        self.seconds = seconds

    def delay(self, attempt: int) -> float:
        return self.seconds

    def __repr__(self) -> str:
        return f"FixedBackoff(seconds={self.seconds})"


def with_retry(
    operation: Callable[[], R],
    max_attempts: int = 3,
    backoff: Optional[Any] = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "request",
) -> R:
    """
    Call ``operation`` until it succeeds or ``max_attempts`` is reached.

    Args:
        operation: Zero-argument callable performing one attempt.
        max_attempts: Total attempts including the first one.
        backoff: Policy exposing ``delay(attempt) -> seconds`` (attempt is
            1-based). Defaults to ``LinearBackoff()``.
        sleep: Sleep function, injectable for tests.
        description: Used in log messages.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        SourceUnavailable: All attempts failed with transient errors.
        Any non-transient exception raised by ``operation`` propagates
        immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    policy = backoff if backoff is not None else LinearBackoff()

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except TransientNetworkError as e:
            if attempt == max_attempts:
                raise SourceUnavailable(
                    f"{description} failed after {max_attempts} attempts: {e.message}",
                    source=e.source,
                    location_id=e.location_id,
                ) from e
            wait = policy.delay(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}. "
                f"Retrying in {wait:.1f}s"
            )
            if wait > 0:
                sleep(wait)


def retrying(
    max_attempts: int = 3,
    backoff: Optional[Any] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[..., R]], Callable[..., R]]:
    """
    Decorator form of ``with_retry``.

    Example:
        >>> @retrying(max_attempts=2, backoff=FixedBackoff(0))
        ... def ping():
        ...     return "ok"
        >>> ping()
        'ok'
    """

    def decorator(fn: Callable[..., R]) -> Callable[..., R]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> R:
            return with_retry(
                lambda: fn(*args, **kwargs),
                max_attempts=max_attempts,
                backoff=backoff,
                sleep=sleep,
                description=fn.__name__,
            )

        return wrapper

    return decorator
