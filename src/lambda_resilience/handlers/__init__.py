"""
AWS Lambda Handlers Module.

Entry points wired with the resilience utilities:

- record_handler: API Gateway function storing records (synchronous invocation)
- queue_worker: SQS batch consumer with partial batch failures
- dlq_redrive: scheduled function replaying the dead letter queue
"""

# Re-export handler utilities for convenience
from lambda_resilience.handlers.utils.observability import logger, metrics, tracer

__all__ = [
    "logger",
    "tracer",
    "metrics",
]
