"""
Environment variable models for type-safe configuration.

This module defines Pydantic models for environment variables used by Lambda handlers,
so a misconfigured function fails at the first invocation with a clear validation
error instead of deep inside business logic.
"""

from typing import Annotated, Optional

from aws_lambda_env_modeler import get_environment_variables
from pydantic import BaseModel, Field


class HandlerEnvVars(BaseModel):
    """Environment variables for Lambda handlers."""

    # DynamoDB table name for storing records
    TABLE_NAME: Annotated[str, Field(
        default='records-table',
        description='DynamoDB table name for record storage',
        min_length=1
    )] = 'records-table'

    # Source queue consumed by the queue worker
    QUEUE_URL: Annotated[Optional[str], Field(
        default=None,
        description='SQS queue URL that failed messages are redriven to'
    )] = None

    # Dead letter queue for messages that could not be processed
    DLQ_URL: Annotated[Optional[str], Field(
        default=None,
        description='SQS dead letter queue URL'
    )] = None

    # AWS region
    AWS_REGION: Annotated[str, Field(
        default='us-east-1',
        description='AWS region for service deployment'
    )] = 'us-east-1'

    # Custom endpoint (LocalStack, moto server)
    AWS_ENDPOINT_URL: Annotated[Optional[str], Field(
        default=None,
        description='Override endpoint for AWS SDK clients'
    )] = None

    # Environment name (dev, staging, prod)
    ENVIRONMENT: Annotated[str, Field(
        default='dev',
        description='Deployment environment name',
        pattern=r'^(dev|test|staging|prod)$'
    )] = 'dev'

    # Service name for observability
    POWERTOOLS_SERVICE_NAME: Annotated[str, Field(
        default='lambda-resilience',
        description='Service name for AWS Powertools'
    )] = 'lambda-resilience'

    # Metrics namespace
    POWERTOOLS_METRICS_NAMESPACE: Annotated[str, Field(
        default='LambdaResilience',
        description='Namespace for CloudWatch metrics'
    )] = 'LambdaResilience'

    # Log level for AWS Powertools Logger
    LOG_LEVEL: Annotated[str, Field(
        default='INFO',
        description='Log level for application logging',
        pattern=r'^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$'
    )] = 'INFO'

    # Enable/disable X-Ray tracing
    POWERTOOLS_TRACE_DISABLED: Annotated[str, Field(
        default='false',
        description='Disable X-Ray tracing (true/false)',
        pattern=r'^(true|false)$'
    )] = 'false'

    # Retry settings
    RETRY_MAX_ATTEMPTS: Annotated[int, Field(
        default=3,
        description='Maximum attempts for retryable operations',
        ge=1,
        le=10
    )] = 3

    RETRY_BASE_DELAY_MS: Annotated[int, Field(
        default=100,
        description='Base delay in milliseconds for exponential backoff',
        ge=1,
        le=60000
    )] = 100

    RETRY_MAX_DELAY_MS: Annotated[int, Field(
        default=5000,
        description='Upper bound in milliseconds for a single backoff delay',
        ge=1,
        le=900000
    )] = 5000

    # Timeout settings
    TIMEOUT_SAFETY_MARGIN_MS: Annotated[int, Field(
        default=1000,
        description='Time reserved before the Lambda deadline for clean shutdown',
        ge=0,
        le=60000
    )] = 1000

    # Dead letter queue redrive
    MAX_REDRIVE_COUNT: Annotated[int, Field(
        default=3,
        description='Times a dead-lettered message is redriven before it is parked',
        ge=0,
        le=100
    )] = 3

    REDRIVE_BASE_DELAY_SECONDS: Annotated[int, Field(
        default=30,
        description='Delivery delay of a first redrive, doubled on every further redrive',
        ge=0,
        le=900
    )] = 30

    # Fault injection
    FAILURE_INJECTION_PARAM: Annotated[Optional[str], Field(
        default=None,
        description='SSM parameter holding the fault injection configuration'
    )] = None

    FAILURE_INJECTION_CONFIG: Annotated[Optional[str], Field(
        default=None,
        description='Inline JSON fault injection configuration'
    )] = None

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT in ('dev', 'test')

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == 'prod'

    @property
    def tracing_enabled(self) -> bool:
        """Check if X-Ray tracing is enabled."""
        return self.POWERTOOLS_TRACE_DISABLED.lower() == 'false'


def get_handler_env_vars() -> HandlerEnvVars:
    """
    Get typed environment variables for Lambda handlers.

    The result is cached by ``aws_lambda_env_modeler`` for the lifetime of the
    execution environment, unless LAMBDA_ENV_MODELER_DISABLE_CACHE is "true".

    Returns:
        Validated environment variables model instance
    """
    return get_environment_variables(model=HandlerEnvVars)
