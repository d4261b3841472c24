"""SQS-backed render queue.

Delivery is at-least-once: a message becomes visible again once its
visibility timeout elapses without a delete, so a crashed or failed render is
retried and, past the redrive policy, moved to the dead-letter queue.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from clipstack.config import get_settings
from clipstack.exceptions import QueueNotConfiguredError, TransientInfraError
from clipstack.schemas.render import RenderJobPayload

logger = logging.getLogger(__name__)

# SQS hard limits
MAX_BATCH_SIZE = 10
MAX_WAIT_SECONDS = 20


@dataclass(frozen=True)
class QueueMessage:
    job: RenderJobPayload
    receipt_handle: str
    delivery_count: int = 1
    message_id: str | None = None


@dataclass(frozen=True)
class QueueDepth:
    waiting: int
    in_progress: int


class SQSRenderQueue:
    """Render job queue over Amazon SQS."""

    def __init__(
        self,
        queue_url: str | None = None,
        region: str | None = None,
        client: Any | None = None,
    ):
        settings = get_settings()
        self.queue_url = queue_url if queue_url is not None else settings.sqs_render_queue_url
        if not self.queue_url:
            raise QueueNotConfiguredError()
        self.visibility_timeout = settings.sqs_visibility_timeout_seconds
        self._client = client or boto3.client("sqs", region_name=region or settings.aws_region)
        logger.info(f"[QUEUE] SQS queue initialized: {self.queue_url}")

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(getattr(self._client, operation), **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise TransientInfraError(f"SQS {operation} failed: {e}") from e

    async def enqueue(self, payload: RenderJobPayload) -> str:
        """Send a render job. Returns the SQS message id."""
        response = await self._call(
            "send_message",
            QueueUrl=self.queue_url,
            MessageBody=payload.model_dump_json(by_alias=True),
            MessageAttributes={
                "jobId": {"DataType": "String", "StringValue": payload.job_id},
                "projectId": {"DataType": "String", "StringValue": payload.project_id},
                "userId": {"DataType": "String", "StringValue": payload.user_id or "-"},
            },
        )
        message_id = response["MessageId"]
        logger.info(f"[QUEUE] Enqueued job {payload.job_id} as message {message_id}")
        return message_id

    async def receive(self, max_messages: int = 1, wait_seconds: int = MAX_WAIT_SECONDS) -> list[QueueMessage]:
        """Long-poll for up to ``max_messages`` render jobs."""
        response = await self._call(
            "receive_message",
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max(1, min(max_messages, MAX_BATCH_SIZE)),
            WaitTimeSeconds=max(0, min(wait_seconds, MAX_WAIT_SECONDS)),
            VisibilityTimeout=self.visibility_timeout,
            AttributeNames=["ApproximateReceiveCount"],
            MessageAttributeNames=["All"],
        )

        messages: list[QueueMessage] = []
        for raw in response.get("Messages", []):
            try:
                job = RenderJobPayload.model_validate(json.loads(raw["Body"]))
            except (json.JSONDecodeError, ValidationError) as e:
                # Left undeleted: redelivery exhausts it into the DLQ
                logger.error(f"[QUEUE] Invalid message {raw.get('MessageId')}: {e}")
                continue
            messages.append(
                QueueMessage(
                    job=job,
                    receipt_handle=raw["ReceiptHandle"],
                    delivery_count=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
                    message_id=raw.get("MessageId"),
                )
            )
        return messages

    async def delete(self, receipt_handle: str) -> None:
        await self._call("delete_message", QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)

    async def extend_visibility(self, receipt_handle: str, seconds: int | None = None) -> None:
        """Keep an in-flight message hidden for another ``seconds`` (default: the visibility timeout)."""
        await self._call(
            "change_message_visibility",
            QueueUrl=self.queue_url,
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=seconds if seconds is not None else self.visibility_timeout,
        )

    async def depth(self) -> QueueDepth:
        response = await self._call(
            "get_queue_attributes",
            QueueUrl=self.queue_url,
            AttributeNames=[
                "ApproximateNumberOfMessages",
                "ApproximateNumberOfMessagesNotVisible",
            ],
        )
        attrs = response.get("Attributes", {})
        return QueueDepth(
            waiting=int(attrs.get("ApproximateNumberOfMessages", 0)),
            in_progress=int(attrs.get("ApproximateNumberOfMessagesNotVisible", 0)),
        )
