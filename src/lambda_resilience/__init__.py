"""
Lambda Resilience Toolkit.

Building blocks for AWS Lambda functions that fail well:

- handlers: example functions wired with the toolkit, plus its utilities
  (error taxonomy, retry with backoff, timeout guards, fault injection)
- aws: cached SDK clients, function invocation, dead letter queue handling
- dal: record persistence
- models: pydantic models shared by the layers above
"""

__version__ = "1.0.0"
__description__ = "Error handling, retries, timeouts and dead letter queues for AWS Lambda"

__all__ = [
    "__version__",
    "__description__",
]
