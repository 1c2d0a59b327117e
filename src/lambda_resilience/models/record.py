"""
Record models used by the example handlers.

``RecordInput`` validates what callers send, ``Record`` is what gets stored, and
the output models describe what handlers answer with.
"""

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

RECORD_ID_PATTERN = r'^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$'
MAX_PAYLOAD_BYTES = 350 * 1024


class RecordInput(BaseModel):
    """Request model for storing a record."""

    record_id: Annotated[str, Field(
        pattern=RECORD_ID_PATTERN,
        description='Caller supplied unique identifier',
        examples=['rec-2024-0001']
    )]

    payload: Annotated[Dict[str, Any], Field(
        description='Arbitrary JSON document to store',
        examples=[{'temperature': 21.5}]
    )]

    source: Annotated[Optional[str], Field(
        default=None,
        max_length=128,
        description='Producer of the record'
    )] = None

    @field_validator('payload')
    @classmethod
    def validate_payload_size(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Keep payloads under the DynamoDB item size limit."""
        if len(json.dumps(v, default=str).encode('utf-8')) > MAX_PAYLOAD_BYTES:
            raise ValueError('payload exceeds the maximum record size')
        return v


class Record(BaseModel):
    """Stored record."""

    record_id: Annotated[str, Field(description='Unique identifier')]

    payload: Annotated[Dict[str, Any], Field(description='Stored JSON document')]

    source: Annotated[Optional[str], Field(default=None, description='Producer of the record')] = None

    created_at: Annotated[str, Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description='ISO timestamp when the record was stored'
    )]

    @classmethod
    def from_input(cls, record_input: RecordInput) -> 'Record':
        return cls(record_id=record_input.record_id, payload=record_input.payload, source=record_input.source)


class RecordOutput(BaseModel):
    """Response model for a stored record."""

    record_id: str
    created_at: str
    request_id: str


class ErrorDetail(BaseModel):
    """Error body returned by API handlers."""

    code: str
    type: str
    message: str
    error_id: str
    timestamp: str


class ErrorOutput(BaseModel):
    """Response model for failed requests."""

    error: ErrorDetail
    retry_after: Optional[int] = None
