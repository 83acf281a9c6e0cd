"""
Manual Override - operator-initiated retry of one event.

Bypasses the backoff and the retry budget, and is the only way out of
dead_letter. Operator errors are raised as typed AppExceptions.
"""
from __future__ import annotations

from dataclasses import dataclass

from webhook_pipeline.core.exceptions import (
    WebhookAlreadyProcessedError,
    WebhookEventNotFoundError,
    WebhookPayloadMissingError,
    WebhookRetryConflictError,
)
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import WebhookEventStatus
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.job_queue import JobQueue, WebhookJob

logger = get_logger(__name__)

_RETRYABLE = {
    WebhookEventStatus.FAILED,
    WebhookEventStatus.PENDING_RETRY,
    WebhookEventStatus.DEAD_LETTER,
}


@dataclass(frozen=True)
class OverrideResult:
    webhook_event_id: str
    previous_status: WebhookEventStatus
    new_status: WebhookEventStatus
    retry_count: int


class ManualOverrideService:
    def __init__(self, store: WebhookEventStore, queue: JobQueue):
        self.store = store
        self.queue = queue

    async def retry_one(self, webhook_event_id: str) -> OverrideResult:
        """
        Put the event back in pending_retry and enqueue it once.

        Raises:
            WebhookEventNotFoundError: no such event.
            WebhookAlreadyProcessedError: event already processed.
            WebhookPayloadMissingError: nothing to replay.
            WebhookRetryConflictError: event is received/processing or was moved concurrently.
            JobQueueError: the row was moved but the job could not be published.
        """
        event = await self.store.get(webhook_event_id)
        if event is None:
            raise WebhookEventNotFoundError(webhook_event_id)
        if event.status == WebhookEventStatus.PROCESSED:
            raise WebhookAlreadyProcessedError(webhook_event_id)
        if not event.payload:
            raise WebhookPayloadMissingError(webhook_event_id)

        previous_status = event.status
        applied = await self.store.transition(
            webhook_event_id,
            _RETRYABLE,
            WebhookEventStatus.PENDING_RETRY,
            increment_retry=True,
        )
        if not applied:
            current = await self.store.get(webhook_event_id)
            raise WebhookRetryConflictError(
                webhook_event_id, current.status.value if current else None
            )

        event = await self.store.get(webhook_event_id)
        await self.queue.enqueue(WebhookJob(
            provider=event.provider.value,
            payload=event.payload,
            webhook_event_id=event.id,
        ))

        logger.info(
            "Manual webhook retry enqueued",
            extra_data={
                "webhook_event_id": webhook_event_id,
                "provider": event.provider.value,
                "previous_status": previous_status.value,
                "retry_count": event.retry_count,
            },
        )
        return OverrideResult(
            webhook_event_id=webhook_event_id,
            previous_status=previous_status,
            new_status=event.status,
            retry_count=event.retry_count,
        )
