"""
Retry with exponential backoff for transient failures.

Only errors the taxonomy marks as retryable (throttling, connection problems,
timeouts, 5xx responses) are retried. Delays grow exponentially, are capped,
and are jittered so concurrent functions do not retry in lockstep.
"""

import functools
import random
import time
from enum import Enum
from typing import Annotated, Any, Callable, Optional, TypeVar

from aws_lambda_powertools.metrics import MetricUnit
from pydantic import BaseModel, Field, model_validator

from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.errors import BaseServiceError, LambdaTimeoutError, is_retryable
from lambda_resilience.handlers.utils.observability import logger, metrics
from lambda_resilience.handlers.utils.timeout import TimeoutGuard

T = TypeVar('T')


class JitterMode(str, Enum):
    """How randomness is applied to a backoff delay."""

    NONE = 'none'
    FULL = 'full'
    EQUAL = 'equal'


class RetryPolicy(BaseModel):
    """Exponential backoff configuration."""

    max_attempts: Annotated[int, Field(
        default=3,
        ge=1,
        le=20,
        description='Total attempts including the first call'
    )] = 3

    base_delay_ms: Annotated[int, Field(
        default=100,
        ge=0,
        description='Delay before the first retry'
    )] = 100

    max_delay_ms: Annotated[int, Field(
        default=5000,
        ge=0,
        description='Upper bound for any single delay'
    )] = 5000

    multiplier: Annotated[float, Field(
        default=2.0,
        ge=1.0,
        description='Growth factor between consecutive delays'
    )] = 2.0

    jitter: Annotated[JitterMode, Field(
        default=JitterMode.FULL,
        description='Randomization applied to each delay'
    )] = JitterMode.FULL

    @model_validator(mode='after')
    def validate_delay_bounds(self) -> 'RetryPolicy':
        """Ensure the delay cap is not below the base delay."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError('max_delay_ms must be greater than or equal to base_delay_ms')
        return self

    @classmethod
    def from_env(cls) -> 'RetryPolicy':
        """Build a policy from the handler environment variables."""
        env_vars = get_handler_env_vars()
        return cls(
            max_attempts=env_vars.RETRY_MAX_ATTEMPTS,
            base_delay_ms=env_vars.RETRY_BASE_DELAY_MS,
            max_delay_ms=max(env_vars.RETRY_MAX_DELAY_MS, env_vars.RETRY_BASE_DELAY_MS),
        )

    def backoff_ms(self, attempt: int) -> float:
        """Un-jittered delay after the given (1-based) failed attempt."""
        if attempt < 1:
            raise ValueError('attempt must be >= 1')
        return min(float(self.max_delay_ms), self.base_delay_ms * (self.multiplier ** (attempt - 1)))

    def compute_delay_ms(self, attempt: int, random_func: Callable[[], float] = random.random) -> float:
        """
        Delay to wait after the given (1-based) failed attempt.

        Args:
            attempt: Number of the attempt that just failed
            random_func: Source of uniform values in [0, 1)

        Returns:
            Delay in milliseconds, never above ``max_delay_ms``
        """
        delay = self.backoff_ms(attempt)
        if self.jitter == JitterMode.FULL:
            return delay * random_func()
        if self.jitter == JitterMode.EQUAL:
            return delay / 2 + (delay / 2) * random_func()
        return delay


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    retryable: Optional[Callable[[BaseException], bool]] = None,
    deadline: Optional[TimeoutGuard] = None,
    sleep: Callable[[float], None] = time.sleep,
    operation: Optional[str] = None,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` and retry retryable failures with exponential backoff.

    Args:
        func: Callable to invoke
        policy: Backoff configuration, defaults to ``RetryPolicy()``
        retryable: Predicate deciding whether an exception is worth retrying
        deadline: Guard for the invocation deadline; no retry is scheduled
            that would not fit in the remaining time
        sleep: Sleep function taking seconds
        operation: Name used in logs and metrics

    Returns:
        Whatever ``func`` returns

    Raises:
        The last exception raised by ``func`` once retries are exhausted,
        or immediately when it is not retryable
    """
    policy = policy or RetryPolicy()
    retryable = retryable or is_retryable
    operation = operation or getattr(func, '__name__', 'operation')

    attempt = 1
    while True:
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            # Timeouts raised by warn_before_timeout are final, whatever the predicate says
            if (isinstance(exc, LambdaTimeoutError) and not exc.retryable) or not retryable(exc):
                raise

            if attempt >= policy.max_attempts:
                metrics.add_metric(name="RetryExhausted", unit=MetricUnit.Count, value=1)
                logger.error("Retries exhausted", extra={
                    "operation": operation,
                    "attempts": attempt,
                    "error": str(exc),
                })
                raise

            delay_ms = policy.compute_delay_ms(attempt)
            if isinstance(exc, BaseServiceError) and exc.retry_after:
                delay_ms = min(max(delay_ms, exc.retry_after * 1000), policy.max_delay_ms)

            if deadline is not None and not deadline.can_wait(delay_ms):
                metrics.add_metric(name="RetryAbandoned", unit=MetricUnit.Count, value=1)
                logger.warning("Not enough time left for another attempt", extra={
                    "operation": operation,
                    "attempts": attempt,
                    "delay_ms": delay_ms,
                    "remaining_ms": deadline.remaining_ms,
                })
                raise

            metrics.add_metric(name="RetryAttempt", unit=MetricUnit.Count, value=1)
            logger.warning(f"Attempt {attempt} of {operation} failed, retrying", extra={
                "operation": operation,
                "attempt": attempt,
                "max_attempts": policy.max_attempts,
                "delay_ms": round(delay_ms, 2),
                "error": str(exc),
            })
            sleep(delay_ms / 1000)
            attempt += 1
            continue

        if attempt > 1:
            logger.info(f"{operation} succeeded on attempt {attempt}", extra={
                "operation": operation,
                "attempt": attempt,
            })
        return result


def retry(
    policy: Optional[RetryPolicy] = None,
    retryable: Optional[Callable[[BaseException], bool]] = None,
):
    """Decorator form of ``call_with_retry``."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return call_with_retry(
                func,
                *args,
                policy=policy,
                retryable=retryable,
                operation=func.__name__,
                **kwargs,
            )
        return wrapper
    return decorator
