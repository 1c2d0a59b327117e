"""
DLQ Redrive - scheduled function replaying dead-lettered messages.

Runs on an EventBridge schedule. Each message goes back to the source queue with
a delivery delay that doubles on every redrive. Once a message has used up its
redrive budget it is parked in the dead letter queue for a human to look at.
"""

from typing import Any, Dict

from aws_lambda_powertools.utilities.typing import LambdaContext

from lambda_resilience.aws.dead_letter_queue import MAX_DELAY_SECONDS, DeadLetterQueue
from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.error_handling import handle_errors
from lambda_resilience.handlers.utils.errors import BusinessLogicError
from lambda_resilience.handlers.utils.observability import logger, metrics, tracer
from lambda_resilience.handlers.utils.retry import JitterMode, RetryPolicy
from lambda_resilience.handlers.utils.timeout import TimeoutGuard


def get_redrive_policy() -> RetryPolicy:
    """Backoff between redrives, from the environment."""
    env_vars = get_handler_env_vars()
    base_delay_ms = env_vars.REDRIVE_BASE_DELAY_SECONDS * 1000
    return RetryPolicy(
        max_attempts=max(1, env_vars.MAX_REDRIVE_COUNT),
        base_delay_ms=base_delay_ms,
        max_delay_ms=max(base_delay_ms, MAX_DELAY_SECONDS * 1000),
        jitter=JitterMode.EQUAL,
    )


@metrics.log_metrics(capture_cold_start_metric=True)
@tracer.capture_lambda_handler
@logger.inject_lambda_context
@handle_errors(mode="raise")
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Redrive the dead letter queue into the source queue.

    Args:
        event: EventBridge scheduled event
        context: Lambda context object

    Returns:
        Summary of redriven, parked and failed messages
    """
    env_vars = get_handler_env_vars()
    if not env_vars.DLQ_URL or not env_vars.QUEUE_URL:
        raise BusinessLogicError(
            message="DLQ_URL and QUEUE_URL must both be configured for redrive",
            error_code="MISSING_CONFIGURATION",
        )

    logger.info("Starting dead letter redrive", extra={
        "dlq_url": env_vars.DLQ_URL,
        "queue_url": env_vars.QUEUE_URL,
        "max_redrive_count": env_vars.MAX_REDRIVE_COUNT,
    })

    result = DeadLetterQueue(env_vars.DLQ_URL).redrive(
        target_queue_url=env_vars.QUEUE_URL,
        policy=get_redrive_policy(),
        max_redrive_count=env_vars.MAX_REDRIVE_COUNT,
        deadline=TimeoutGuard(context),
    )
    return result.to_dict()
