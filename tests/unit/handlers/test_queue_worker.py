"""
Unit tests for the SQS queue worker.
"""

import json
from unittest.mock import Mock

import pytest

from lambda_resilience.handlers import queue_worker, record_handler
from lambda_resilience.handlers.queue_worker import lambda_handler
from lambda_resilience.handlers.utils.errors import ConflictError, FunctionRuntimeError, ThrottlingError, ValidationError

VALID_BODY = json.dumps({"record_id": "rec-1", "payload": {"a": 1}})


@pytest.fixture
def repository():
    """Replace the record repository with a mock that stores everything."""
    repository = Mock()
    repository.put_record.side_effect = lambda record: record
    record_handler._repository = repository
    return repository


@pytest.fixture
def dead_letter_queue():
    """Replace the dead letter queue with a mock."""
    dead_letter_queue = Mock()
    dead_letter_queue.send.return_value = "dlq-message-id"
    queue_worker._dead_letter_queue = dead_letter_queue
    return dead_letter_queue


def _event(*records):
    return {"Records": list(records)}


class TestQueueWorker:
    """Test cases for the queue worker."""

    def test_all_records_processed(self, sqs_record, lambda_context, repository):
        """Test a batch where every message succeeds."""
        event = _event(
            sqs_record(VALID_BODY, "msg-1"),
            sqs_record(json.dumps({"record_id": "rec-2", "payload": {}}), "msg-2"),
        )

        response = lambda_handler(event, lambda_context)

        assert response == {"batchItemFailures": []}
        assert repository.put_record.call_count == 2

    def test_retryable_failure_is_reported(self, sqs_record, lambda_context, repository, dead_letter_queue):
        """Test that only the failed message is handed back to SQS."""

        def put_record(record):
            if record.record_id == "rec-2":
                raise ThrottlingError("throttled", service_name="dynamodb")
            return record

        repository.put_record.side_effect = put_record
        event = _event(
            sqs_record(VALID_BODY, "msg-1"),
            sqs_record(json.dumps({"record_id": "rec-2", "payload": {}}), "msg-2"),
        )

        response = lambda_handler(event, lambda_context)

        assert response == {"batchItemFailures": [{"itemIdentifier": "msg-2"}]}
        dead_letter_queue.send.assert_not_called()

    def test_invalid_message_goes_to_dead_letter_queue(self, sqs_record, lambda_context, repository, dead_letter_queue):
        """Test that messages that can never succeed are dead-lettered right away."""
        event = _event(
            sqs_record(VALID_BODY, "msg-1"),
            sqs_record('{"record_id": "rec-2"}', "msg-2", {
                "RedriveCount": {"stringValue": "2", "dataType": "Number"},
                "FirstFailedAt": {"stringValue": "2024-01-01T00:00:00+00:00", "dataType": "String"},
            }),
        )

        response = lambda_handler(event, lambda_context)

        assert response == {"batchItemFailures": []}
        dead_letter_queue.send.assert_called_once()
        kwargs = dead_letter_queue.send.call_args.kwargs
        assert kwargs["body"] == '{"record_id": "rec-2"}'
        assert isinstance(kwargs["error"], ValidationError)
        assert kwargs["source"] == "arn:aws:sqs:us-east-1:123456789012:test-records-queue"
        assert kwargs["redrive_count"] == 2
        assert kwargs["first_failed_at"] == "2024-01-01T00:00:00+00:00"

    def test_invalid_message_without_dead_letter_queue(self, sqs_record, lambda_context, repository):
        """Test that without a dead letter queue every failure is handed back to SQS."""
        event = _event(sqs_record(VALID_BODY, "msg-1"), sqs_record("not json", "msg-2"))

        response = lambda_handler(event, lambda_context)

        assert response == {"batchItemFailures": [{"itemIdentifier": "msg-2"}]}

    def test_duplicate_delivery_is_acknowledged(self, sqs_record, lambda_context, repository, dead_letter_queue):
        """Test that a redelivered message whose record exists is treated as done."""
        repository.put_record.side_effect = ConflictError("Record", "rec-1")

        response = lambda_handler(_event(sqs_record(VALID_BODY)), lambda_context)

        assert response == {"batchItemFailures": []}
        dead_letter_queue.send.assert_not_called()

    def test_whole_batch_failure_fails_invocation(self, sqs_record, lambda_context, repository):
        """Test that the invocation fails when no message could be processed."""
        repository.put_record.side_effect = ThrottlingError("throttled", service_name="dynamodb")

        with pytest.raises(FunctionRuntimeError):
            lambda_handler(_event(sqs_record(VALID_BODY)), lambda_context)

    def test_no_time_left(self, sqs_record, lambda_context, repository, dead_letter_queue):
        """Test that messages are handed back when the deadline is near."""
        lambda_context.remaining_ms = 500
        event = _event(sqs_record(VALID_BODY, "msg-1"), sqs_record(VALID_BODY, "msg-2"))

        with pytest.raises(FunctionRuntimeError):
            lambda_handler(event, lambda_context)

        repository.put_record.assert_not_called()
        dead_letter_queue.send.assert_not_called()

    def test_injected_status_code_fails_every_message(self, sqs_record, lambda_context, repository, monkeypatch):
        """Test that an injected status code hands the whole batch back to SQS instead of acknowledging it."""
        monkeypatch.setenv("FAILURE_INJECTION_CONFIG", json.dumps({
            "isEnabled": True,
            "failureMode": "statuscode",
            "statusCode": 500,
        }))
        event = _event(sqs_record(VALID_BODY, "msg-1"), sqs_record(VALID_BODY, "msg-2"))

        response = lambda_handler(event, lambda_context)

        assert response == {"batchItemFailures": [{"itemIdentifier": "msg-1"}, {"itemIdentifier": "msg-2"}]}
        repository.put_record.assert_not_called()
