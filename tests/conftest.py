"""
Pytest configuration and shared fixtures.

Environment variables are set before the package is imported, because the
Powertools tracer and metrics read them when the module-level instances are built.
"""

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

os.environ.update({
    "AWS_DEFAULT_REGION": "us-east-1",
    "AWS_REGION": "us-east-1",
    "AWS_ACCESS_KEY_ID": "testing",
    "AWS_SECRET_ACCESS_KEY": "testing",
    "AWS_SECURITY_TOKEN": "testing",
    "AWS_SESSION_TOKEN": "testing",
    "TABLE_NAME": "test-records-table",
    "ENVIRONMENT": "test",
    "POWERTOOLS_SERVICE_NAME": "test-lambda-resilience",
    "POWERTOOLS_METRICS_NAMESPACE": "TestLambdaResilience",
    "LOG_LEVEL": "DEBUG",
    "POWERTOOLS_TRACE_DISABLED": "true",  # Disable X-Ray in tests
    "RETRY_BASE_DELAY_MS": "1",
    "RETRY_MAX_DELAY_MS": "5",
    # Re-read configuration on every call so monkeypatched variables apply
    "LAMBDA_ENV_MODELER_DISABLE_CACHE": "true",
})
os.environ.pop("AWS_ENDPOINT_URL", None)

import boto3  # noqa: E402
import pytest  # noqa: E402
from moto import mock_aws  # noqa: E402

from lambda_resilience.aws.clients import clear_client_cache  # noqa: E402
from lambda_resilience.handlers.utils.observability import metrics  # noqa: E402

TABLE_NAME = "test-records-table"


@dataclass
class FakeLambdaContext:
    """Lambda context with a controllable amount of remaining time."""

    function_name: str = "test-lambda-function"
    memory_limit_in_mb: int = 512
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:test-lambda-function"
    aws_request_id: str = "test-request-id-123"
    log_group_name: str = "/aws/lambda/test-lambda-function"
    log_stream_name: str = "2024/01/01/[$LATEST]test123"
    function_version: str = "$LATEST"
    remaining_ms: int = 30000

    def get_remaining_time_in_millis(self) -> int:
        return self.remaining_ms


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset cached clients, metrics and module-level handler state between tests."""
    from lambda_resilience.handlers import queue_worker, record_handler

    clear_client_cache()
    metrics.clear_metrics()
    record_handler._repository = None
    queue_worker._dead_letter_queue = None
    yield
    clear_client_cache()
    metrics.clear_metrics()
    record_handler._repository = None
    queue_worker._dead_letter_queue = None


@pytest.fixture
def lambda_context() -> FakeLambdaContext:
    """Create a Lambda context with 30 seconds left."""
    return FakeLambdaContext()


@pytest.fixture
def aws_mock():
    """Mock every AWS service for the duration of the test."""
    with mock_aws():
        yield


@pytest.fixture
def dynamodb_table(aws_mock):
    """Create a mock DynamoDB records table."""
    dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
    table = dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[{"AttributeName": "record_id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "record_id", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    yield table


@pytest.fixture
def sqs_queues(aws_mock, monkeypatch) -> Dict[str, str]:
    """Create a source queue and its dead letter queue, and point the handlers at them."""
    sqs = boto3.client("sqs", region_name="us-east-1")
    dlq_url = sqs.create_queue(QueueName="test-records-dlq")["QueueUrl"]
    dlq_arn = sqs.get_queue_attributes(QueueUrl=dlq_url, AttributeNames=["QueueArn"])["Attributes"]["QueueArn"]
    queue_url = sqs.create_queue(
        QueueName="test-records-queue",
        Attributes={"RedrivePolicy": json.dumps({"deadLetterTargetArn": dlq_arn, "maxReceiveCount": "3"})},
    )["QueueUrl"]

    monkeypatch.setenv("QUEUE_URL", queue_url)
    monkeypatch.setenv("DLQ_URL", dlq_url)
    return {"queue_url": queue_url, "dlq_url": dlq_url, "dlq_arn": dlq_arn}


@pytest.fixture
def sample_record_data() -> Dict[str, Any]:
    """Sample record request body."""
    return {
        "record_id": "rec-0001",
        "payload": {"temperature": 21.5, "unit": "C", "tags": ["kitchen"]},
        "source": "sensor-17",
    }


@pytest.fixture
def api_gateway_event(sample_record_data) -> Dict[str, Any]:
    """Create a sample API Gateway event for testing."""
    return {
        "httpMethod": "POST",
        "path": "/records",
        "resource": "/records",
        "headers": {
            "Content-Type": "application/json",
            "User-Agent": "test-agent/1.0",
        },
        "body": json.dumps(sample_record_data),
        "requestContext": {
            "requestId": "test-request-id-123",
            "accountId": "123456789012",
            "stage": "test",
            "httpMethod": "POST",
            "path": "/records",
            "protocol": "HTTP/1.1",
            "requestTime": "01/Jan/2024:12:00:00 +0000",
            "requestTimeEpoch": 1704110400000,
            "identity": {
                "sourceIp": "127.0.0.1",
                "userAgent": "test-agent/1.0",
            },
        },
        "pathParameters": None,
        "queryStringParameters": None,
        "multiValueQueryStringParameters": None,
        "stageVariables": None,
        "isBase64Encoded": False,
    }


@pytest.fixture
def sqs_record():
    """Factory for single SQS event records."""

    def create_record(body: str, message_id: str = "msg-1", message_attributes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "messageId": message_id,
            "receiptHandle": f"receipt-{message_id}",
            "body": body,
            "attributes": {
                "ApproximateReceiveCount": "1",
                "SentTimestamp": "1704110400000",
                "SenderId": "123456789012",
                "ApproximateFirstReceiveTimestamp": "1704110400001",
            },
            "messageAttributes": message_attributes or {},
            "md5OfBody": "d41d8cd98f00b204e9800998ecf8427e",
            "eventSource": "aws:sqs",
            "eventSourceARN": "arn:aws:sqs:us-east-1:123456789012:test-records-queue",
            "awsRegion": "us-east-1",
        }

    return create_record


@pytest.fixture
def client_error():
    """Factory for botocore ClientErrors."""
    from botocore.exceptions import ClientError

    def create_error(error_code: str, message: str = "Test error", status_code: int = 400):
        return ClientError(
            error_response={
                "Error": {"Code": error_code, "Message": message},
                "ResponseMetadata": {"HTTPStatusCode": status_code},
            },
            operation_name="TestOperation",
        )

    return create_error
