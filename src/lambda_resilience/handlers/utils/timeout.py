"""
Deadline awareness for Lambda invocations.

Lambda kills a function that reaches its configured timeout without running any
more of its code, so nothing gets logged and no cleanup happens. The helpers here
keep a safety margin before that deadline so work can be abandoned cleanly.
"""

import functools
import signal
import sys
import threading
from typing import Any, Optional

from aws_lambda_powertools.metrics import MetricUnit

from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.errors import LambdaTimeoutError
from lambda_resilience.handlers.utils.observability import logger, metrics


def _remaining_time_ms(context: Any) -> Optional[int]:
    """Remaining invocation time, or None when the context cannot tell."""
    get_remaining = getattr(context, 'get_remaining_time_in_millis', None)
    if get_remaining is None:
        return None
    remaining = get_remaining()
    if isinstance(remaining, bool) or not isinstance(remaining, (int, float)):
        return None
    return int(remaining)


class TimeoutGuard:
    """Tracks the time left in the current invocation."""

    def __init__(self, context: Any, safety_margin_ms: Optional[int] = None):
        self.context = context
        if safety_margin_ms is None:
            safety_margin_ms = get_handler_env_vars().TIMEOUT_SAFETY_MARGIN_MS
        self.safety_margin_ms = safety_margin_ms

    @property
    def remaining_ms(self) -> int:
        remaining = _remaining_time_ms(self.context)
        return sys.maxsize if remaining is None else remaining

    @property
    def expired(self) -> bool:
        return self.remaining_ms <= self.safety_margin_ms

    def can_wait(self, delay_ms: float) -> bool:
        """Check whether waiting ``delay_ms`` still leaves the safety margin."""
        return self.remaining_ms - delay_ms > self.safety_margin_ms

    def check(self, operation: str) -> None:
        """
        Fail fast when the invocation is about to time out.

        Args:
            operation: Name of the operation about to start

        Raises:
            LambdaTimeoutError: If less than the safety margin remains
        """
        remaining = self.remaining_ms
        if remaining <= self.safety_margin_ms:
            metrics.add_metric(name="TimeoutAvoided", unit=MetricUnit.Count, value=1)
            raise LambdaTimeoutError(
                message=f"Only {remaining}ms left before the function deadline, not starting {operation}",
                operation=operation,
                remaining_ms=remaining,
            )


def warn_before_timeout(safety_margin_ms: Optional[int] = None):
    """
    Decorator failing the invocation shortly before Lambda would kill it.

    A SIGALRM is armed for ``remaining time - safety margin``. When it fires the
    imminent timeout is logged and counted, and ``LambdaTimeoutError`` is raised
    inside the handler so the normal error handling path runs.
    """

    def decorator(handler):
        @functools.wraps(handler)
        def wrapper(event, context):
            remaining = _remaining_time_ms(context)
            if remaining is None or threading.current_thread() is not threading.main_thread():
                return handler(event, context)

            margin = safety_margin_ms
            if margin is None:
                margin = get_handler_env_vars().TIMEOUT_SAFETY_MARGIN_MS

            fire_in_ms = remaining - margin
            if fire_in_ms <= 0:
                logger.warning("Invocation started inside the timeout safety margin", extra={
                    "remaining_ms": remaining,
                    "safety_margin_ms": margin,
                })
                return handler(event, context)

            def _on_alarm(signum, frame):
                logger.warning("Function is about to time out", extra={
                    "safety_margin_ms": margin,
                    "function_name": getattr(context, 'function_name', None),
                    "request_id": getattr(context, 'aws_request_id', None),
                })
                metrics.add_metric(name="TimeoutImminent", unit=MetricUnit.Count, value=1)
                raise LambdaTimeoutError(
                    message=f"Function was about to time out ({margin}ms safety margin)",
                    operation=getattr(handler, '__name__', 'handler'),
                    remaining_ms=margin,
                    retryable=False,
                )

            previous_handler = signal.signal(signal.SIGALRM, _on_alarm)
            signal.setitimer(signal.ITIMER_REAL, fire_in_ms / 1000)
            try:
                return handler(event, context)
            finally:
                signal.setitimer(signal.ITIMER_REAL, 0)
                signal.signal(signal.SIGALRM, previous_handler)

        return wrapper
    return decorator
