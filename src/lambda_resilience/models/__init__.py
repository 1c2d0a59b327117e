"""
Models Package

Pydantic models for records, dead letter messages and fault injection
configuration.
"""

from .dead_letter import DeadLetterMessage
from .fault import FailureMode, FaultInjectionConfig
from .record import ErrorDetail, ErrorOutput, Record, RecordInput, RecordOutput

__all__ = [
    # Record models
    "RecordInput",
    "Record",
    "RecordOutput",
    "ErrorDetail",
    "ErrorOutput",

    # Dead letter models
    "DeadLetterMessage",

    # Fault injection models
    "FailureMode",
    "FaultInjectionConfig",
]
