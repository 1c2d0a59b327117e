"""
Lambda-to-Lambda invocation with error classification.

A failed invoke can mean three different things. The Lambda service rejected the
request (invocation error). The function ran and raised (runtime error). Or the
function ran out of time (timeout). The invoker turns each into its own error
type so callers can tell them apart.
"""

import json
from typing import Any, Dict, Optional

from aws_lambda_powertools.metrics import MetricUnit
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from lambda_resilience.aws.clients import get_client
from lambda_resilience.handlers.utils.errors import (
    THROTTLING_ERROR_CODES,
    TRANSIENT_ERROR_CODES,
    FunctionRuntimeError,
    InvocationError,
    LambdaTimeoutError,
    classify_exception,
)
from lambda_resilience.handlers.utils.observability import logger, metrics, tracer

# Invoke errors that clear up on their own once capacity or networking settles
RETRYABLE_INVOKE_ERROR_CODES = THROTTLING_ERROR_CODES | TRANSIENT_ERROR_CODES | frozenset({
    "EC2ThrottledException",
    "ENILimitReachedException",
    "ResourceNotReadyException",
    "ResourceConflictException",
    "SubnetIPAddressLimitReachedException",
    "EFSMountConnectivityException",
    "EFSMountTimeoutException",
})

TIMEOUT_MESSAGE_MARKER = "Task timed out"

INVOCATION_TYPES = ("RequestResponse", "Event", "DryRun")


class LambdaInvoker:
    """Invoke other Lambda functions and surface failures as typed errors."""

    def __init__(self, client: Optional[BaseClient] = None):
        self.client = client or get_client('lambda')

    @tracer.capture_method
    def invoke(
        self,
        function_name: str,
        payload: Optional[Dict[str, Any]] = None,
        invocation_type: str = "RequestResponse",
        qualifier: Optional[str] = None,
    ) -> Optional[Any]:
        """
        Invoke a function.

        Args:
            function_name: Name or ARN of the function
            payload: JSON serializable event
            invocation_type: RequestResponse, Event or DryRun
            qualifier: Version or alias

        Returns:
            The decoded JSON response for synchronous invocations (the raw text when
            the response is not JSON), else None

        Raises:
            InvocationError: The Lambda service refused the invocation
            FunctionRuntimeError: The function raised an unhandled error
            LambdaTimeoutError: The function exceeded its timeout
        """
        if invocation_type not in INVOCATION_TYPES:
            raise ValueError(f"Unsupported invocation type: {invocation_type}")

        invoke_kwargs: Dict[str, Any] = {
            'FunctionName': function_name,
            'InvocationType': invocation_type,
            'Payload': json.dumps(payload or {}).encode('utf-8'),
        }
        if qualifier:
            invoke_kwargs['Qualifier'] = qualifier

        tracer.put_annotation("invoked_function", function_name)

        try:
            response = self.client.invoke(**invoke_kwargs)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            error_message = e.response.get('Error', {}).get('Message', str(e))
            retryable = error_code in RETRYABLE_INVOKE_ERROR_CODES
            metrics.add_metric(name="InvocationError", unit=MetricUnit.Count, value=1)
            logger.warning("Lambda invocation rejected", extra={
                "function_name": function_name,
                "aws_error_code": error_code,
                "retryable": retryable,
            })
            raise InvocationError(
                message=f"Invoking {function_name} failed with {error_code}: {error_message}",
                function_name=function_name,
                error_code="INVOCATION_THROTTLED" if error_code in THROTTLING_ERROR_CODES else "INVOCATION_ERROR",
                retryable=retryable,
            ) from e
        except BotoCoreError as e:
            raise classify_exception(e, operation=f"invoke:{function_name}") from e

        body = response.get('Payload')
        raw_payload = body.read() if body is not None else b''

        function_error = response.get('FunctionError')
        if function_error:
            self._raise_function_error(function_name, function_error, raw_payload)

        if invocation_type != "RequestResponse" or not raw_payload:
            return None
        try:
            return json.loads(raw_payload)
        except ValueError:
            logger.warning("Lambda response is not JSON, returning it as text", extra={"function_name": function_name})
            return raw_payload.decode('utf-8', errors='replace')

    @staticmethod
    def _raise_function_error(function_name: str, function_error: str, raw_payload: bytes) -> None:
        try:
            detail = json.loads(raw_payload) if raw_payload else {}
        except ValueError:
            detail = {"errorMessage": raw_payload.decode('utf-8', errors='replace')}
        if not isinstance(detail, dict):
            detail = {"errorMessage": str(detail)}

        error_message = detail.get('errorMessage', 'Unknown error')
        error_type = detail.get('errorType', function_error)

        if TIMEOUT_MESSAGE_MARKER in error_message:
            metrics.add_metric(name="InvokedFunctionTimeout", unit=MetricUnit.Count, value=1)
            raise LambdaTimeoutError(
                message=f"{function_name} timed out: {error_message}",
                operation=f"invoke:{function_name}",
            )

        metrics.add_metric(name="InvokedFunctionError", unit=MetricUnit.Count, value=1)
        raise FunctionRuntimeError(
            message=f"{function_name} failed with {error_type}: {error_message}",
            remote_error_type=error_type,
            function_name=function_name,
        )
