"""
Centralized observability utilities for AWS Lambda handlers.

This module provides configured instances of AWS Lambda Powertools for logging,
tracing, and metrics collection, plus small helpers for the success, failure
and duration metrics every handler in this package emits.
"""

import time
from typing import Optional

from aws_lambda_powertools.logging import Logger
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from aws_lambda_powertools.tracing import Tracer

# Metrics namespace for operational metrics
METRICS_NAMESPACE = 'LambdaResilience'

# JSON output format, service name can be set by environment variable "POWERTOOLS_SERVICE_NAME"
# Debug sampling is controlled by "POWERTOOLS_LOGGER_SAMPLE_RATE"
logger: Logger = Logger()

# Service name can be set by environment variable "POWERTOOLS_SERVICE_NAME"
# Disabled by setting POWERTOOLS_TRACE_DISABLED to "True"
tracer: Tracer = Tracer()

# Namespace and service name can be set by environment variables:
# - POWERTOOLS_METRICS_NAMESPACE
# - POWERTOOLS_SERVICE_NAME
metrics = Metrics(namespace=METRICS_NAMESPACE)


def add_duration_metric(start: float, name: str = "", end: Optional[float] = None) -> float:
    """
    Record the elapsed time since ``start`` as a '<name>Duration' metric.

    Args:
        start: Start timestamp from ``time.perf_counter()``
        name: Prefix for the metric name
        end: End timestamp, defaults to now

    Returns:
        The recorded duration in milliseconds
    """
    end = time.perf_counter() if end is None else end
    duration_ms = (end - start) * 1000
    metrics.add_metric(name=f"{name}Duration", unit=MetricUnit.Milliseconds, value=duration_ms)
    return duration_ms


def add_success_metric(name: str = "") -> None:
    """Record a successful operation as '<name>Success'=1 / '<name>Failure'=0."""
    metrics.add_metric(name=f"{name}Success", unit=MetricUnit.Count, value=1)
    metrics.add_metric(name=f"{name}Failure", unit=MetricUnit.Count, value=0)


def add_failure_metric(name: str = "") -> None:
    """Record a failed operation as '<name>Success'=0 / '<name>Failure'=1."""
    metrics.add_metric(name=f"{name}Success", unit=MetricUnit.Count, value=0)
    metrics.add_metric(name=f"{name}Failure", unit=MetricUnit.Count, value=1)
