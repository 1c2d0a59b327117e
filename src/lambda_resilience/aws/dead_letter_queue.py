"""
SQS dead letter queue with redrive support.

Messages that cannot be processed are moved out of the hot path instead of being
retried forever. A scheduled redrive later replays them to the source queue with
exponential backoff and parks them once the redrive budget is spent.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from aws_lambda_powertools.metrics import MetricUnit
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from lambda_resilience.aws.clients import get_client
from lambda_resilience.handlers.utils.errors import classify_exception
from lambda_resilience.handlers.utils.observability import logger, metrics, tracer
from lambda_resilience.handlers.utils.retry import RetryPolicy
from lambda_resilience.handlers.utils.timeout import TimeoutGuard
from lambda_resilience.models.dead_letter import ERROR_MESSAGE_MAX_LENGTH, DeadLetterMessage

# SQS limits
MAX_DELAY_SECONDS = 900
MAX_VISIBILITY_TIMEOUT_SECONDS = 43200
# The visibility limit counts from the receive, so leave room for the time already spent
PARK_VISIBILITY_TIMEOUT_SECONDS = MAX_VISIBILITY_TIMEOUT_SECONDS - 60
MAX_RECEIVE_BATCH = 10


@dataclass
class RedriveResult:
    """Result of a redrive run."""

    redriven: int = 0
    parked: int = 0
    failed: int = 0
    redriven_message_ids: List[str] = field(default_factory=list)
    parked_message_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.redriven + self.parked + self.failed

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['total'] = self.total
        return result


class DeadLetterQueue:
    """Send, inspect and redrive dead-lettered messages."""

    def __init__(self, queue_url: str, client: Optional[BaseClient] = None):
        if not queue_url:
            raise ValueError("queue_url is required")
        self.queue_url = queue_url
        self.client = client or get_client('sqs')

    @tracer.capture_method
    def send(
        self,
        body: Union[str, Dict[str, Any]],
        error: BaseException,
        source: str,
        redrive_count: int = 0,
        first_failed_at: Optional[str] = None,
    ) -> str:
        """
        Dead-letter a message.

        Args:
            body: Original message body
            error: The failure that made the message undeliverable
            source: Queue or function the message failed in
            redrive_count: Redrives the message already went through
            first_failed_at: ISO timestamp of the first failure, if known

        Returns:
            SQS message id of the dead-lettered message
        """
        service_error = classify_exception(error)
        now = datetime.now(timezone.utc).isoformat()
        message = DeadLetterMessage(
            body=body if isinstance(body, str) else json.dumps(body, default=str),
            source=source or 'unknown',
            error_code=service_error.error_code,
            error_message=service_error.message[:ERROR_MESSAGE_MAX_LENGTH],
            error_type=service_error.error_type,
            redrive_count=redrive_count,
            first_failed_at=first_failed_at or now,
            last_failed_at=now,
        )

        response = self.client.send_message(
            QueueUrl=self.queue_url,
            MessageBody=message.body,
            MessageAttributes=message.to_message_attributes(),
        )

        metrics.add_metric(name="DeadLetterSent", unit=MetricUnit.Count, value=1)
        logger.warning("Message sent to dead letter queue", extra={
            "dlq_url": self.queue_url,
            "source": message.source,
            "error_code": message.error_code,
            "error_type": message.error_type.value,
            "redrive_count": redrive_count,
            "dlq_message_id": response.get('MessageId'),
        })
        return response['MessageId']

    @tracer.capture_method
    def receive(
        self,
        max_messages: int = MAX_RECEIVE_BATCH,
        wait_seconds: int = 0,
    ) -> List[DeadLetterMessage]:
        """Receive up to ``max_messages`` dead-lettered messages."""
        response = self.client.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max(1, min(max_messages, MAX_RECEIVE_BATCH)),
            WaitTimeSeconds=wait_seconds,
            MessageAttributeNames=['All'],
            AttributeNames=['All'],
        )
        return [DeadLetterMessage.from_sqs_message(message) for message in response.get('Messages', [])]

    def delete(self, receipt_handle: str) -> None:
        self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)

    def park(self, receipt_handle: str, visibility_timeout: int = PARK_VISIBILITY_TIMEOUT_SECONDS) -> None:
        """Hide a message from further redrive runs until its visibility timeout expires."""
        self.client.change_message_visibility(
            QueueUrl=self.queue_url,
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=min(visibility_timeout, PARK_VISIBILITY_TIMEOUT_SECONDS),
        )

    @tracer.capture_method
    def redrive(
        self,
        target_queue_url: str,
        policy: Optional[RetryPolicy] = None,
        max_redrive_count: int = 3,
        max_batches: int = 10,
        deadline: Optional[TimeoutGuard] = None,
    ) -> RedriveResult:
        """
        Replay dead-lettered messages to ``target_queue_url``.

        Each message is re-sent with a ``DelaySeconds`` taken from the backoff
        policy for its redrive count, and removed from the dead letter queue only
        once the send succeeded. Messages already redriven ``max_redrive_count``
        times are parked instead.

        Args:
            target_queue_url: Queue the messages originally came from
            policy: Backoff used to space out redrives
            max_redrive_count: Redrives allowed per message
            max_batches: Upper bound on receive calls per run
            deadline: Stop early when the invocation is about to time out

        Returns:
            Counts of redriven, parked and failed messages
        """
        policy = policy or RetryPolicy(max_attempts=max(1, max_redrive_count), base_delay_ms=1000, max_delay_ms=MAX_DELAY_SECONDS * 1000)
        result = RedriveResult()

        for _ in range(max_batches):
            if deadline is not None and deadline.expired:
                logger.warning("Stopping redrive before the function deadline", extra=result.to_dict())
                break

            messages = self.receive()
            if not messages:
                break

            for message in messages:
                if message.redrive_count >= max_redrive_count:
                    self._park_exhausted(message, result)
                else:
                    self._redrive_message(message, target_queue_url, policy, result)

        metrics.add_metric(name="DeadLetterRedriven", unit=MetricUnit.Count, value=result.redriven)
        metrics.add_metric(name="DeadLetterParked", unit=MetricUnit.Count, value=result.parked)
        metrics.add_metric(name="DeadLetterRedriveFailed", unit=MetricUnit.Count, value=result.failed)
        logger.info("Dead letter redrive completed", extra=result.to_dict())
        return result

    def _redrive_message(
        self,
        message: DeadLetterMessage,
        target_queue_url: str,
        policy: RetryPolicy,
        result: RedriveResult,
    ) -> None:
        next_count = message.redrive_count + 1
        delay_seconds = min(MAX_DELAY_SECONDS, int(policy.compute_delay_ms(next_count) / 1000))
        attributes = message.model_copy(update={'redrive_count': next_count}).to_message_attributes()

        try:
            self.client.send_message(
                QueueUrl=target_queue_url,
                MessageBody=message.body,
                DelaySeconds=delay_seconds,
                MessageAttributes={
                    name: attributes[name] for name in ('RedriveCount', 'FirstFailedAt', 'Source')
                },
            )
            self.delete(message.receipt_handle)
        except (ClientError, BotoCoreError) as e:
            result.failed += 1
            result.errors.append(str(e))
            logger.exception("Failed to redrive message", extra={
                "dlq_message_id": message.message_id,
                "target_queue_url": target_queue_url,
            })
            return

        result.redriven += 1
        if message.message_id:
            result.redriven_message_ids.append(message.message_id)
        logger.info("Message redriven", extra={
            "dlq_message_id": message.message_id,
            "redrive_count": next_count,
            "delay_seconds": delay_seconds,
        })

    def _park_exhausted(self, message: DeadLetterMessage, result: RedriveResult) -> None:
        try:
            self.park(message.receipt_handle)
        except (ClientError, BotoCoreError) as e:
            result.failed += 1
            result.errors.append(str(e))
            logger.exception("Failed to park message", extra={"dlq_message_id": message.message_id})
            return

        result.parked += 1
        if message.message_id:
            result.parked_message_ids.append(message.message_id)
        logger.error("Message exhausted its redrive budget", extra={
            "dlq_message_id": message.message_id,
            "source": message.source,
            "error_code": message.error_code,
            "error_message": message.error_message,
            "redrive_count": message.redrive_count,
            "first_failed_at": message.first_failed_at,
        })
