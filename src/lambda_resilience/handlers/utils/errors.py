"""
Error taxonomy and error reporting utilities for AWS Lambda handlers.

Every failure a handler can observe is mapped onto a ``BaseServiceError`` carrying
a stable, machine readable error code, the kind of Lambda failure it represents
(invocation, runtime or timeout) and whether retrying can help. Handlers log,
measure and answer with these errors instead of raw exceptions.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotocoreConnectionError
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from lambda_resilience.handlers.utils.observability import logger, metrics, tracer


class ErrorSeverity(str, Enum):
    """Error severity levels for classification."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ErrorCategory(str, Enum):
    """Error categories for classification."""
    VALIDATION = "VALIDATION"
    BUSINESS_LOGIC = "BUSINESS_LOGIC"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    SECURITY = "SECURITY"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"


class LambdaErrorType(str, Enum):
    """The three ways a Lambda invocation can fail."""
    INVOCATION = "INVOCATION"
    RUNTIME = "RUNTIME"
    TIMEOUT = "TIMEOUT"


THROTTLING_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "SlowDown",
})

TRANSIENT_ERROR_CODES = frozenset({
    "InternalError",
    "InternalFailure",
    "InternalServerError",
    "ServiceException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "RequestTimeout",
    "RequestTimeoutException",
})

NOT_FOUND_ERROR_CODES = frozenset({
    "ResourceNotFoundException",
    "NoSuchKey",
    "NoSuchBucket",
    "NotFound",
    "ParameterNotFound",
    "QueueDoesNotExist",
    "AWS.SimpleQueueService.NonExistentQueue",
})

VALIDATION_ERROR_CODES = frozenset({
    "ValidationException",
    "ValidationError",
    "InvalidParameterValue",
    "InvalidParameterValueException",
    "InvalidParameterException",
    "InvalidRequestContentException",
    "RequestTooLargeException",
    "SerializationException",
    "MissingParameter",
})

CONFLICT_ERROR_CODES = frozenset({
    "ConditionalCheckFailedException",
    "TransactionConflictException",
})


class ErrorContext(BaseModel):
    """Context information for errors."""

    request_id: str = Field(description="Unique request identifier")
    operation: str = Field(description="Operation being performed")
    resource_id: Optional[str] = Field(default=None, description="Resource identifier")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    additional_data: Dict[str, Any] = Field(default_factory=dict)


class BaseServiceError(Exception):
    """Base exception class for service errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.BUSINESS_LOGIC,
        error_type: LambdaErrorType = LambdaErrorType.RUNTIME,
        retryable: bool = False,
        context: Optional[ErrorContext] = None,
        retry_after: Optional[int] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.error_type = error_type
        self.retryable = retryable
        self.context = context
        self.retry_after = retry_after
        self.user_message = user_message or "An error occurred while processing your request."
        self.error_id = str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and response."""
        return {
            "error_id": self.error_id,
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "error_type": self.error_type.value,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
            "context": self.context.model_dump(mode="json") if self.context else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class ValidationError(BaseServiceError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, str]]] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            context=context,
            user_message="Invalid input provided. Please check your request and try again.",
        )
        self.field_errors = field_errors or []


class BusinessLogicError(BaseServiceError):
    """Raised when business logic validation fails."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUSINESS_LOGIC_ERROR",
        context: Optional[ErrorContext] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.BUSINESS_LOGIC,
            context=context,
            user_message=user_message,
        )


class ResourceNotFoundError(BaseServiceError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        context: Optional[ErrorContext] = None,
    ):
        message = f"{resource_type} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            error_code="RESOURCE_NOT_FOUND",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.BUSINESS_LOGIC,
            context=context,
            user_message=f"The requested {resource_type.lower()} was not found.",
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(BaseServiceError):
    """Raised when a write conflicts with the current state of a resource."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=f"{resource_type} with ID '{resource_id}' already exists or was modified",
            error_code="RESOURCE_CONFLICT",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.BUSINESS_LOGIC,
            context=context,
            user_message=f"The {resource_type.lower()} conflicts with an existing one.",
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ExternalServiceError(BaseServiceError):
    """Raised when external service calls fail."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: str = "EXTERNAL_SERVICE_ERROR",
        retryable: bool = True,
        retry_after: Optional[int] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXTERNAL_SERVICE,
            retryable=retryable,
            context=context,
            retry_after=retry_after,
            user_message="A required service is temporarily unavailable. Please try again later.",
        )
        self.service_name = service_name


class ThrottlingError(BaseServiceError):
    """Raised when a downstream service throttles our requests."""

    def __init__(
        self,
        message: str,
        service_name: str,
        retry_after: Optional[int] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code="THROTTLED",
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.RATE_LIMIT,
            retryable=True,
            context=context,
            retry_after=retry_after,
            user_message="Too many requests. Please try again shortly.",
        )
        self.service_name = service_name


class InvocationError(BaseServiceError):
    """Raised when the Lambda service rejects an invocation before the function runs."""

    def __init__(
        self,
        message: str,
        function_name: str,
        error_code: str = "INVOCATION_ERROR",
        retryable: bool = False,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXTERNAL_SERVICE,
            error_type=LambdaErrorType.INVOCATION,
            retryable=retryable,
            context=context,
            user_message="A downstream function could not be invoked. Please try again later.",
        )
        self.function_name = function_name


class FunctionRuntimeError(BaseServiceError):
    """Raised when function code fails while running."""

    def __init__(
        self,
        message: str,
        error_code: str = "FUNCTION_RUNTIME_ERROR",
        remote_error_type: Optional[str] = None,
        function_name: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.INFRASTRUCTURE,
            error_type=LambdaErrorType.RUNTIME,
            context=context,
            user_message="An unexpected error occurred",
        )
        self.remote_error_type = remote_error_type
        self.function_name = function_name


class LambdaTimeoutError(BaseServiceError):
    """Raised when work cannot finish before the function deadline."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        remaining_ms: Optional[int] = None,
        context: Optional[ErrorContext] = None,
        retryable: bool = True,
    ):
        super().__init__(
            message=message,
            error_code="FUNCTION_TIMEOUT",
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.TIMEOUT,
            error_type=LambdaErrorType.TIMEOUT,
            retryable=retryable,
            context=context,
            user_message="The request took too long to process. Please try again.",
        )
        self.operation = operation
        self.remaining_ms = remaining_ms


class FaultInjectionError(BaseServiceError):
    """Raised by the fault injector to simulate a transient failure."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="INJECTED_FAULT",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.INFRASTRUCTURE,
            retryable=True,
        )


def create_error_context(
    request_id: str,
    operation: str,
    resource_id: Optional[str] = None,
    **additional_data: Any,
) -> ErrorContext:
    """Create an error context for consistent error handling."""
    return ErrorContext(
        request_id=request_id,
        operation=operation,
        resource_id=resource_id,
        additional_data=additional_data,
    )


def _classify_client_error(
    error: ClientError,
    operation: Optional[str],
    context: Optional[ErrorContext],
) -> BaseServiceError:
    error_info = error.response.get('Error', {})
    error_code = error_info.get('Code', 'Unknown')
    error_message = error_info.get('Message', str(error))
    status_code = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
    service_name = getattr(error, 'operation_name', None) or operation or 'aws'

    if error_code in THROTTLING_ERROR_CODES:
        return ThrottlingError(
            message=f"{service_name} throttled: {error_message}",
            service_name=service_name,
            context=context,
        )
    if error_code in NOT_FOUND_ERROR_CODES:
        return ResourceNotFoundError(
            resource_type="Resource",
            resource_id=error_message,
            context=context,
        )
    if error_code in CONFLICT_ERROR_CODES:
        return ConflictError(
            resource_type="Resource",
            resource_id=context.resource_id if context and context.resource_id else "unknown",
            context=context,
        )
    if error_code in VALIDATION_ERROR_CODES:
        return ValidationError(message=f"{error_code}: {error_message}", context=context)

    return ExternalServiceError(
        message=f"{service_name} failed with {error_code}: {error_message}",
        service_name=service_name,
        error_code="EXTERNAL_SERVICE_ERROR" if status_code >= 500 or error_code in TRANSIENT_ERROR_CODES
        else f"AWS_{error_code}".upper(),
        retryable=status_code >= 500 or error_code in TRANSIENT_ERROR_CODES,
        context=context,
    )


def classify_exception(
    exc: BaseException,
    operation: Optional[str] = None,
    context: Optional[ErrorContext] = None,
) -> BaseServiceError:
    """
    Map any exception onto the service error taxonomy.

    Args:
        exc: The exception to classify
        operation: Name of the operation that failed, used for messages
        context: Error context attached to the resulting error

    Returns:
        A ``BaseServiceError``; service errors are returned unchanged
    """
    if isinstance(exc, BaseServiceError):
        return exc

    if isinstance(exc, ClientError):
        classified = _classify_client_error(exc, operation, context)
    elif isinstance(exc, (BotocoreConnectionError, HTTPClientError)):
        classified = ExternalServiceError(
            message=f"Connection error: {exc}",
            service_name=operation or 'aws',
            error_code="SERVICE_CONNECTION_ERROR",
            retryable=True,
            context=context,
        )
    elif isinstance(exc, BotoCoreError):
        classified = ExternalServiceError(
            message=f"AWS SDK error: {exc}",
            service_name=operation or 'aws',
            error_code="AWS_SDK_ERROR",
            retryable=False,
            context=context,
        )
    elif isinstance(exc, PydanticValidationError):
        classified = ValidationError(
            message="Request validation failed",
            field_errors=[
                {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ],
            context=context,
        )
    elif isinstance(exc, TimeoutError):
        classified = LambdaTimeoutError(message=str(exc) or "Operation timed out", operation=operation, context=context)
    else:
        classified = FunctionRuntimeError(
            message=f"{type(exc).__name__}: {exc}",
            remote_error_type=type(exc).__name__,
            context=context,
        )

    classified.__cause__ = exc
    return classified


def is_retryable(exc: BaseException) -> bool:
    """Check whether retrying the failed operation can succeed."""
    return classify_exception(exc).retryable


@tracer.capture_method
def log_error_metrics(error: BaseServiceError) -> None:
    """Log error metrics for monitoring and alerting."""

    # Add error metrics
    metrics.add_metric(name="ErrorCount", unit="Count", value=1)
    metrics.add_metric(name=f"Error{error.category.value}Count", unit="Count", value=1)
    metrics.add_metric(name=f"Error{error.severity.value}Count", unit="Count", value=1)
    metrics.add_metric(name=f"Error{error.error_type.value}Count", unit="Count", value=1)

    # Add trace annotations
    tracer.put_annotation("error_code", error.error_code)
    tracer.put_annotation("error_category", error.category.value)
    tracer.put_annotation("error_type", error.error_type.value)

    # Add trace metadata
    tracer.put_metadata("error_details", error.to_dict())

    # Log structured error
    logger.error(
        "Service error occurred",
        extra={
            "error_id": error.error_id,
            "error_code": error.error_code,
            "error_severity": error.severity.value,
            "error_category": error.category.value,
            "error_type": error.error_type.value,
            "retryable": error.retryable,
            "error_message": error.message,
            "context": error.context.model_dump(mode="json") if error.context else None,
        }
    )


def format_error_response(
    error: BaseServiceError,
    include_details: bool = False,
) -> Dict[str, Any]:
    """Format error for API response."""

    response: Dict[str, Any] = {
        "error": {
            "code": error.error_code,
            "type": error.error_type.value,
            "message": error.user_message,
            "error_id": error.error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }

    if error.retry_after:
        response["retry_after"] = error.retry_after

    if include_details:
        response["error"]["details"] = {"message": error.message}
        if error.context:
            response["error"]["details"].update({
                "operation": error.context.operation,
                "resource_id": error.context.resource_id,
            })

    # Add field errors for validation errors
    if isinstance(error, ValidationError) and error.field_errors:
        response["error"]["field_errors"] = error.field_errors

    return response


def get_http_status_code(error: BaseServiceError) -> int:
    """Get appropriate HTTP status code for error."""

    status_mapping = {
        "VALIDATION_ERROR": 400,
        "RESOURCE_NOT_FOUND": 404,
        "RESOURCE_CONFLICT": 409,
        "BUSINESS_LOGIC_ERROR": 422,
        "THROTTLED": 429,
        "INVOCATION_THROTTLED": 429,
        "EXTERNAL_SERVICE_ERROR": 502,
        "SERVICE_CONNECTION_ERROR": 502,
        "INVOCATION_ERROR": 502,
        "SERVICE_UNAVAILABLE": 503,
        "FUNCTION_TIMEOUT": 504,
    }

    return status_mapping.get(error.error_code, 500)


def create_api_response(
    status_code: int,
    body: Any,
    headers: Optional[Dict[str, str]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create standardized API Gateway response."""

    default_headers = {
        "Content-Type": "application/json",
        "X-Request-ID": request_id or str(uuid.uuid4()),
    }

    if headers:
        default_headers.update(headers)

    return {
        "statusCode": status_code,
        "headers": default_headers,
        "body": body if isinstance(body, str) else str(body),
    }
