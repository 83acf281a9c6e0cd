"""
Ingestion - durable, idempotent acceptance of a provider callback.

The row is committed before anything is enqueued. A broker outage moves it to
pending_retry and the sweep dispatches it later. A crash between the insert and
the enqueue leaves it in received, and redeliveries are acknowledged as
duplicates; the stale reaper hands such rows to the sweep once they are older
than WEBHOOK_STALE_PROCESSING_SECONDS.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from webhook_pipeline.core.exceptions import JobQueueError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import WebhookEventStatus
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.job_queue import JobQueue, WebhookJob
from webhook_pipeline.domain.services.providers.registry import HandlerRegistry

logger = get_logger(__name__)

INGEST_QUEUED = "queued"
INGEST_PENDING_RETRY = "pending_retry"
INGEST_DUPLICATE = "duplicate"


@dataclass(frozen=True)
class IngestResult:
    webhook_event_id: str
    is_new: bool
    status: str

    @property
    def queued(self) -> bool:
        return self.status == INGEST_QUEUED


class IngestionService:
    def __init__(self, store: WebhookEventStore, queue: JobQueue, registry: HandlerRegistry):
        self.store = store
        self.queue = queue
        self.registry = registry

    async def ingest(self, provider: str, payload: dict[str, Any]) -> IngestResult:
        """
        Record the callback once and enqueue it.

        Raises:
            UnknownProviderError: no handler for `provider`.
            InvalidWebhookPayloadError: payload has no event identity.
        """
        handler = self.registry.get(provider)
        identity = handler.extract_identity(payload)

        event, is_new = await self.store.record_if_new(
            handler.provider, identity.event_id, identity.event_type, payload
        )
        if not is_new:
            return IngestResult(event.id, is_new=False, status=INGEST_DUPLICATE)

        try:
            await self.queue.enqueue(WebhookJob(
                provider=handler.provider.value,
                payload=payload,
                webhook_event_id=event.id,
            ))
        except JobQueueError as exc:
            await self.store.transition(
                event.id,
                {WebhookEventStatus.RECEIVED},
                WebhookEventStatus.PENDING_RETRY,
            )
            logger.error(
                "Webhook enqueue failed, left for retry sweep",
                extra_data={
                    "webhook_event_id": event.id,
                    "provider": handler.provider.value,
                    "error": exc.message,
                },
            )
            return IngestResult(event.id, is_new=True, status=INGEST_PENDING_RETRY)

        return IngestResult(event.id, is_new=True, status=INGEST_QUEUED)
