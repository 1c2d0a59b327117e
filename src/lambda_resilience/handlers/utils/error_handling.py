"""
Handler-level error handling.

Synchronous callers (API Gateway) need an HTTP answer with a stable error code.
Asynchronous and event source callers need the invocation to fail, so Lambda's
retry and dead letter machinery takes over. ``handle_errors`` does both, and
logs and counts every failure the same way in either mode.
"""

import functools
import json
from typing import Optional
from uuid import uuid4

from aws_lambda_powertools.metrics import MetricUnit

from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.errors import (
    BaseServiceError,
    classify_exception,
    create_api_response,
    create_error_context,
    format_error_response,
    get_http_status_code,
    log_error_metrics,
)
from lambda_resilience.handlers.utils.observability import logger, metrics

API_MODE = "api"
RAISE_MODE = "raise"


def _request_id(context) -> str:
    request_id = getattr(context, 'aws_request_id', None)
    return request_id if isinstance(request_id, str) else str(uuid4())


def handle_errors(mode: str = API_MODE, include_details: Optional[bool] = None):
    """
    Decorator turning handler exceptions into classified, logged service errors.

    Args:
        mode: "api" answers with an API Gateway error response, "raise" re-raises
            the classified error so the invocation fails
        include_details: Expose internal error messages in API responses;
            defaults to on outside production
    """
    if mode not in (API_MODE, RAISE_MODE):
        raise ValueError(f"Unsupported error handling mode: {mode}")

    def decorator(handler):
        @functools.wraps(handler)
        def wrapper(event, context):
            try:
                return handler(event, context)
            except Exception as exc:
                request_id = _request_id(context)
                error = classify_exception(exc, operation=handler.__name__)
                if error.context is None:
                    error.context = create_error_context(request_id=request_id, operation=handler.__name__)

                if not isinstance(exc, BaseServiceError):
                    logger.exception("Unexpected error in handler", extra={
                        "error": str(exc),
                        "function_name": handler.__name__,
                    })
                    metrics.add_metric(name="UnexpectedError", unit=MetricUnit.Count, value=1)

                log_error_metrics(error)

                if mode == RAISE_MODE:
                    if error is exc:
                        raise
                    raise error from exc

                show_details = include_details
                if show_details is None:
                    show_details = not get_handler_env_vars().is_production

                return create_api_response(
                    status_code=get_http_status_code(error),
                    body=json.dumps(format_error_response(error, include_details=show_details)),
                    headers={"Retry-After": str(error.retry_after)} if error.retry_after else None,
                    request_id=request_id,
                )

        return wrapper
    return decorator
