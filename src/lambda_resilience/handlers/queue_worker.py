"""
Queue Worker - SQS batch consumer with partial batch failures.

Retryable failures are reported back to SQS item by item, so only the failed
messages are redelivered and the queue's redrive policy moves them to the dead
letter queue eventually. Failures that can never succeed (bad payloads) go to the
dead letter queue straight away, so they do not loop until maxReceiveCount.
"""

from typing import Any, Dict, Optional

from aws_lambda_powertools.utilities.batch import BatchProcessor, EventType, process_partial_response
from aws_lambda_powertools.utilities.data_classes.sqs_event import SQSRecord
from aws_lambda_powertools.utilities.typing import LambdaContext

from lambda_resilience.aws.dead_letter_queue import DeadLetterQueue
from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.record_handler import get_repository
from lambda_resilience.handlers.utils.error_handling import handle_errors
from lambda_resilience.handlers.utils.errors import ConflictError, classify_exception, log_error_metrics
from lambda_resilience.handlers.utils.fault_injection import inject_fault
from lambda_resilience.handlers.utils.observability import add_failure_metric, add_success_metric, logger, metrics, tracer
from lambda_resilience.handlers.utils.retry import RetryPolicy, call_with_retry
from lambda_resilience.handlers.utils.timeout import TimeoutGuard
from lambda_resilience.models.record import Record, RecordInput

processor = BatchProcessor(event_type=EventType.SQS)

_dead_letter_queue: Optional[DeadLetterQueue] = None


def get_dead_letter_queue() -> Optional[DeadLetterQueue]:
    """Get or create the module-level dead letter queue, if one is configured."""
    global _dead_letter_queue

    if _dead_letter_queue is None:
        dlq_url = get_handler_env_vars().DLQ_URL
        if dlq_url:
            _dead_letter_queue = DeadLetterQueue(dlq_url)

    return _dead_letter_queue


def _redrive_count(record: SQSRecord) -> int:
    attribute = record.message_attributes["RedriveCount"]
    if attribute is None or not attribute.string_value:
        return 0
    return int(attribute.string_value)


def _first_failed_at(record: SQSRecord) -> Optional[str]:
    attribute = record.message_attributes["FirstFailedAt"]
    return attribute.string_value if attribute is not None else None


def fail_whole_batch(event: Dict[str, Any], status_code: int) -> Dict[str, Any]:
    """Report every message as failed, so an injected status code never acknowledges the batch."""
    records = event.get("Records", [])
    logger.warning("Failing the whole batch", extra={"status_code": status_code, "record_count": len(records)})
    return {"batchItemFailures": [{"itemIdentifier": record["messageId"]} for record in records]}


@tracer.capture_method
def record_handler(record: SQSRecord, lambda_context: Optional[LambdaContext] = None) -> Dict[str, Any]:
    """
    Process a single SQS message.

    Raises:
        Exception: For retryable failures, so the message is reported in
            ``batchItemFailures`` and redelivered by SQS
    """
    guard = TimeoutGuard(lambda_context)
    logger.append_keys(message_id=record.message_id)

    try:
        guard.check('process_message')
        record_input = RecordInput.model_validate_json(record.body)
        call_with_retry(
            get_repository().put_record,
            Record.from_input(record_input),
            policy=RetryPolicy.from_env(),
            deadline=guard,
            operation='put_record',
        )
    except ConflictError:
        # Redelivered message whose first delivery already stored the record
        logger.info("Record already stored, acknowledging duplicate delivery")
        return {"message_id": record.message_id, "status": "duplicate"}
    except Exception as exc:
        error = classify_exception(exc, operation='process_message')
        log_error_metrics(error)
        add_failure_metric("MessageProcess")

        dead_letter_queue = get_dead_letter_queue()
        if error.retryable or dead_letter_queue is None:
            raise

        dead_letter_queue.send(
            body=record.body,
            error=error,
            source=record.event_source_arn or 'unknown',
            redrive_count=_redrive_count(record),
            first_failed_at=_first_failed_at(record),
        )
        return {"message_id": record.message_id, "status": "dead_lettered"}
    finally:
        logger.remove_keys(["message_id"])

    add_success_metric("MessageProcess")
    return {"message_id": record.message_id, "status": "stored"}


@metrics.log_metrics(capture_cold_start_metric=True)
@tracer.capture_lambda_handler
@logger.inject_lambda_context
@handle_errors(mode="raise")
@inject_fault(status_response=fail_whole_batch)
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Process an SQS batch.

    Args:
        event: SQS event
        context: Lambda context object

    Returns:
        Partial batch response listing the message ids SQS should redeliver
    """
    logger.info("Processing SQS batch", extra={"record_count": len(event.get("Records", []))})
    return process_partial_response(
        event=event,
        record_handler=record_handler,
        processor=processor,
        context=context,
    )
