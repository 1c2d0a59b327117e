"""
Fault injection configuration model.

Accepts both snake_case keys and the camelCase keys used by the failure-lambda
configuration format, so an existing SSM parameter can be reused as-is.
"""

import re
from enum import Enum
from typing import Annotated, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class FailureMode(str, Enum):
    """Kinds of faults that can be injected."""

    LATENCY = 'latency'
    EXCEPTION = 'exception'
    STATUSCODE = 'statuscode'
    DISKSPACE = 'diskspace'
    DENYLIST = 'denylist'


class FaultInjectionConfig(BaseModel):
    """Fault injection settings for a function."""

    model_config = ConfigDict(populate_by_name=True)

    is_enabled: Annotated[bool, Field(
        default=False,
        validation_alias=AliasChoices('is_enabled', 'isEnabled'),
        description='Master switch for fault injection'
    )] = False

    failure_mode: Annotated[FailureMode, Field(
        default=FailureMode.LATENCY,
        validation_alias=AliasChoices('failure_mode', 'failureMode'),
        description='Kind of fault to inject'
    )] = FailureMode.LATENCY

    rate: Annotated[float, Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description='Probability that an invocation gets a fault'
    )] = 1.0

    min_latency_ms: Annotated[int, Field(
        default=100,
        ge=0,
        validation_alias=AliasChoices('min_latency_ms', 'minLatency'),
        description='Lower bound of injected latency'
    )] = 100

    max_latency_ms: Annotated[int, Field(
        default=400,
        ge=0,
        validation_alias=AliasChoices('max_latency_ms', 'maxLatency'),
        description='Upper bound of injected latency'
    )] = 400

    exception_msg: Annotated[str, Field(
        default='Injected fault',
        validation_alias=AliasChoices('exception_msg', 'exceptionMsg'),
        description='Message of the injected exception'
    )] = 'Injected fault'

    status_code: Annotated[int, Field(
        default=500,
        ge=100,
        le=599,
        validation_alias=AliasChoices('status_code', 'statusCode'),
        description='Status code returned instead of running the handler'
    )] = 500

    disk_space_mb: Annotated[int, Field(
        default=100,
        ge=1,
        le=10240,
        validation_alias=AliasChoices('disk_space_mb', 'diskSpace'),
        description='Megabytes written to the temp directory'
    )] = 100

    denylist: Annotated[List[str], Field(
        default_factory=list,
        description='Regular expressions of hosts whose requests fail'
    )]

    @field_validator('denylist')
    @classmethod
    def validate_denylist(cls, v: List[str]) -> List[str]:
        """Ensure every denylist entry is a valid regular expression."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f'Invalid denylist pattern {pattern!r}: {e}')
        return v

    @model_validator(mode='after')
    def validate_latency_range(self) -> 'FaultInjectionConfig':
        """Ensure the latency range is not inverted."""
        if self.max_latency_ms < self.min_latency_ms:
            raise ValueError('max_latency_ms must be greater than or equal to min_latency_ms')
        return self
