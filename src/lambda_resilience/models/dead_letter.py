"""
Dead letter message model.

The original message body travels untouched; failure details ride along as SQS
message attributes so a redriven message is byte-for-byte what the consumer
originally received.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, Field

from lambda_resilience.handlers.utils.errors import LambdaErrorType

# Error code for messages SQS moved on its own after maxReceiveCount deliveries
MAX_RECEIVE_COUNT_EXCEEDED = 'MAX_RECEIVE_COUNT_EXCEEDED'

ERROR_MESSAGE_MAX_LENGTH = 256


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeadLetterMessage(BaseModel):
    """A message parked in a dead letter queue together with why it failed."""

    body: Annotated[str, Field(
        description='Original message body'
    )]

    source: Annotated[str, Field(
        default='unknown',
        description='Queue or function the message failed in'
    )] = 'unknown'

    error_code: Annotated[str, Field(
        default=MAX_RECEIVE_COUNT_EXCEEDED,
        description='Error code of the last failure'
    )] = MAX_RECEIVE_COUNT_EXCEEDED

    error_message: Annotated[str, Field(
        default='',
        max_length=ERROR_MESSAGE_MAX_LENGTH,
        description='Truncated error message of the last failure'
    )] = ''

    error_type: Annotated[LambdaErrorType, Field(
        default=LambdaErrorType.RUNTIME,
        description='Lambda failure kind of the last failure'
    )] = LambdaErrorType.RUNTIME

    redrive_count: Annotated[int, Field(
        default=0,
        ge=0,
        description='How many times the message was already redriven'
    )] = 0

    first_failed_at: Annotated[str, Field(
        default_factory=_now_iso,
        description='ISO timestamp of the first failure'
    )]

    last_failed_at: Annotated[str, Field(
        default_factory=_now_iso,
        description='ISO timestamp of the most recent failure'
    )]

    message_id: Optional[str] = None
    receipt_handle: Optional[str] = None

    def to_message_attributes(self) -> Dict[str, Dict[str, str]]:
        """SQS message attributes describing the failure."""
        return {
            'ErrorCode': {'DataType': 'String', 'StringValue': self.error_code},
            'ErrorType': {'DataType': 'String', 'StringValue': self.error_type.value},
            'ErrorMessage': {'DataType': 'String', 'StringValue': self.error_message or '-'},
            'Source': {'DataType': 'String', 'StringValue': self.source},
            'RedriveCount': {'DataType': 'Number', 'StringValue': str(self.redrive_count)},
            'FirstFailedAt': {'DataType': 'String', 'StringValue': self.first_failed_at},
            'LastFailedAt': {'DataType': 'String', 'StringValue': self.last_failed_at},
        }

    @classmethod
    def from_sqs_message(cls, message: Dict[str, Any]) -> 'DeadLetterMessage':
        """Build from a ``receive_message`` entry."""
        attributes = {
            name: value.get('StringValue')
            for name, value in message.get('MessageAttributes', {}).items()
        }
        system_attributes = message.get('Attributes', {})

        fields: Dict[str, Any] = {
            'body': message.get('Body', ''),
            'source': attributes.get('Source') or system_attributes.get('DeadLetterQueueSourceArn', 'unknown'),
            'error_code': attributes.get('ErrorCode') or MAX_RECEIVE_COUNT_EXCEEDED,
            'error_message': (attributes.get('ErrorMessage') or '')[:ERROR_MESSAGE_MAX_LENGTH],
            'redrive_count': int(attributes.get('RedriveCount') or 0),
            'message_id': message.get('MessageId'),
            'receipt_handle': message.get('ReceiptHandle'),
        }
        if attributes.get('ErrorType') in LambdaErrorType._value2member_map_:
            fields['error_type'] = LambdaErrorType(attributes['ErrorType'])
        if attributes.get('FirstFailedAt'):
            fields['first_failed_at'] = attributes['FirstFailedAt']
        if attributes.get('LastFailedAt'):
            fields['last_failed_at'] = attributes['LastFailedAt']
        return cls(**fields)
