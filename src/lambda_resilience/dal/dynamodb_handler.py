"""
DynamoDB implementation of the record repository.

The table resource comes from the shared client cache, so it is created once per
execution environment. Every DynamoDB failure leaves this module as a classified
service error, which tells callers whether retrying makes sense.
"""

import json
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, TypeVar

from aws_lambda_powertools.metrics import MetricUnit
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from lambda_resilience.aws.clients import get_resource
from lambda_resilience.handlers.utils.errors import (
    BaseServiceError,
    ConflictError,
    ResourceNotFoundError,
    classify_exception,
    create_error_context,
)
from lambda_resilience.handlers.utils.observability import add_duration_metric, logger, metrics, tracer
from lambda_resilience.models.record import Record

T = TypeVar('T')


def _to_dynamodb(value: Dict[str, Any]) -> Dict[str, Any]:
    """DynamoDB rejects floats; round-trip through JSON into Decimals."""
    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


def _from_dynamodb(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamodb(v) for v in value]
    return value


class DynamoDbRecordRepository:
    """Record repository backed by a DynamoDB table keyed on ``record_id``."""

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        self.table_name = table_name
        self.table = get_resource('dynamodb', region_name=region_name, endpoint_url=endpoint_url).Table(table_name)

        logger.info("DynamoDB record repository initialized", extra={"table_name": table_name})

    def _execute(self, operation: str, record_id: str, func: Callable[[], T]) -> T:
        operation_start = time.perf_counter()
        try:
            result = func()
        except BaseServiceError:
            metrics.add_metric(name=f"DynamoDB{operation}Error", unit=MetricUnit.Count, value=1)
            raise
        except (ClientError, BotoCoreError) as e:
            metrics.add_metric(name=f"DynamoDB{operation}Error", unit=MetricUnit.Count, value=1)
            error_code = e.response['Error']['Code'] if isinstance(e, ClientError) else type(e).__name__
            logger.error(f"DynamoDB {operation} error", extra={
                "aws_error_code": error_code,
                "table_name": self.table_name,
                "record_id": record_id,
            })
            raise classify_exception(
                e,
                operation=operation,
                context=create_error_context(
                    request_id=record_id,
                    operation=operation,
                    resource_id=record_id,
                    table_name=self.table_name,
                ),
            ) from e

        add_duration_metric(operation_start, name=f"DynamoDB{operation}")
        tracer.put_annotation("dynamodb_operation", operation)
        return result

    @tracer.capture_method
    def put_record(self, record: Record) -> Record:
        """
        Store a new record.

        Raises:
            ConflictError: A record with the same id already exists
            BaseServiceError: Any other classified DynamoDB failure
        """
        item = {
            'record_id': record.record_id,
            'payload': _to_dynamodb(record.payload),
            'created_at': record.created_at,
        }
        if record.source is not None:
            item['source'] = record.source

        def _put():
            try:
                self.table.put_item(Item=item, ConditionExpression=Attr('record_id').not_exists())
            except ClientError as e:
                if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                    raise ConflictError(resource_type='Record', resource_id=record.record_id) from e
                raise
            return record

        stored = self._execute('PutItem', record.record_id, _put)
        logger.info("Record stored", extra={"table_name": self.table_name, "record_id": record.record_id})
        return stored

    @tracer.capture_method
    def get_record(self, record_id: str) -> Record:
        """
        Retrieve a record.

        Raises:
            ResourceNotFoundError: No record with this id exists
        """

        def _get():
            return self.table.get_item(Key={'record_id': record_id}, ConsistentRead=True).get('Item')

        item = self._execute('GetItem', record_id, _get)
        if item is None:
            raise ResourceNotFoundError(resource_type='Record', resource_id=record_id)
        return Record.model_validate(_from_dynamodb(item))
