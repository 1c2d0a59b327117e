"""
Record Handler - synchronous API Gateway function storing records.

Shows the request/response side of the toolkit. Configuration comes from typed
environment variables and the table resource is created once and reused. Writes
are retried with backoff inside the invocation deadline. Every failure is
answered with a stable error code, and faults can be injected on demand.
"""

import base64
import binascii
import json
from typing import Any, Dict, Optional

from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext

from lambda_resilience.dal import RecordRepository
from lambda_resilience.dal.dynamodb_handler import DynamoDbRecordRepository
from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.error_handling import handle_errors
from lambda_resilience.handlers.utils.errors import ValidationError, create_api_response
from lambda_resilience.handlers.utils.fault_injection import inject_fault
from lambda_resilience.handlers.utils.observability import add_success_metric, logger, metrics, tracer
from lambda_resilience.handlers.utils.retry import RetryPolicy, call_with_retry
from lambda_resilience.handlers.utils.timeout import TimeoutGuard, warn_before_timeout
from lambda_resilience.models.record import Record, RecordInput, RecordOutput

# Created on first use and reused by every warm invocation
_repository: Optional[RecordRepository] = None


def get_repository() -> RecordRepository:
    """Get or create the module-level repository."""
    global _repository

    if _repository is None:
        _repository = DynamoDbRecordRepository(table_name=get_handler_env_vars().TABLE_NAME)

    return _repository


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Decode the JSON body of an API Gateway proxy event."""
    body = event.get('body') or ''
    if event.get('isBase64Encoded') and body:
        try:
            body = base64.b64decode(body, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValidationError(message=f"Request body is not valid base64 encoded UTF-8: {e}")
    if not body:
        raise ValidationError(message="Request body is required")
    try:
        data = json.loads(body)
    except ValueError as e:
        raise ValidationError(message=f"Request body is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError(message="Request body must be a JSON object")
    return data


@tracer.capture_method
def store_record(record_input: RecordInput, context: LambdaContext) -> Record:
    """Store a record, retrying transient failures while time allows."""
    guard = TimeoutGuard(context)
    guard.check('store_record')

    record = Record.from_input(record_input)
    tracer.put_annotation("record_id", record.record_id)

    return call_with_retry(
        get_repository().put_record,
        record,
        policy=RetryPolicy.from_env(),
        deadline=guard,
        operation='put_record',
    )


@metrics.log_metrics(capture_cold_start_metric=True)
@tracer.capture_lambda_handler
@logger.inject_lambda_context(correlation_id_path=correlation_paths.API_GATEWAY_REST)
@warn_before_timeout()
@handle_errors(mode="api")
@inject_fault()
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Store the record in the request body.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        API Gateway response, 201 with the stored record id on success
    """
    logger.info("Store record request received", extra={
        "path": event.get("path"),
        "http_method": event.get("httpMethod"),
    })

    record_input = RecordInput.model_validate(parse_body(event))
    record = store_record(record_input, context)

    add_success_metric("RecordStore")

    output = RecordOutput(
        record_id=record.record_id,
        created_at=record.created_at,
        request_id=context.aws_request_id,
    )
    return create_api_response(
        status_code=201,
        body=output.model_dump_json(),
        request_id=context.aws_request_id,
    )
