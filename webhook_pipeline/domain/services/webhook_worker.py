"""
Webhook Worker - executes one WebhookJob and records the outcome.

Claim (received/pending_retry -> processing), run the provider handler, then
report processed or failed. Every step goes through the conditional transition,
so a duplicate delivery of the same job (at-least-once queue) or a row that
another actor already moved is abandoned without side effects.
"""
from __future__ import annotations

import time
from enum import Enum

from webhook_pipeline.core.exceptions import AppException
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import WebhookEventStatus, utcnow
from webhook_pipeline.domain.services.event_store import WebhookEventStore, truncate_error
from webhook_pipeline.domain.services.job_queue import WebhookJob
from webhook_pipeline.domain.services.providers.base_handler import HandlerResult
from webhook_pipeline.domain.services.providers.registry import HandlerRegistry

logger = get_logger(__name__)

_CLAIMABLE = {WebhookEventStatus.RECEIVED, WebhookEventStatus.PENDING_RETRY}


class WorkerOutcome(str, Enum):
    PROCESSED = "processed"
    FAILED = "failed"
    # someone else owns the row (or it is terminal), nothing was done
    ABANDONED = "abandoned"
    # handler ran but the closing transition did not apply (reaped meanwhile)
    STALE = "stale"


class WebhookWorker:
    def __init__(self, store: WebhookEventStore, registry: HandlerRegistry):
        self.store = store
        self.registry = registry

    async def process(self, job: WebhookJob) -> WorkerOutcome:
        claimed = await self.store.transition(
            job.webhook_event_id,
            _CLAIMABLE,
            WebhookEventStatus.PROCESSING,
            {"processing_started_at": utcnow()},
        )
        if not claimed:
            logger.info(
                "Webhook job abandoned, event not claimable",
                extra_data={
                    "webhook_event_id": job.webhook_event_id,
                    "provider": job.provider,
                },
            )
            return WorkerOutcome.ABANDONED

        started = time.monotonic()
        result = await self._run_handler(job)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if result.success:
            applied = await self.store.transition(
                job.webhook_event_id,
                {WebhookEventStatus.PROCESSING},
                WebhookEventStatus.PROCESSED,
                {"processed_at": utcnow(), "processing_time_ms": elapsed_ms},
            )
            outcome = WorkerOutcome.PROCESSED
        else:
            applied = await self.store.transition(
                job.webhook_event_id,
                {WebhookEventStatus.PROCESSING},
                WebhookEventStatus.FAILED,
                {
                    "processed_at": utcnow(),
                    "processing_time_ms": elapsed_ms,
                    "error": truncate_error(result.error or "Unknown error"),
                },
            )
            outcome = WorkerOutcome.FAILED

        log_data = {
            "webhook_event_id": job.webhook_event_id,
            "provider": job.provider,
            "processing_time_ms": elapsed_ms,
            "outcome": outcome.value,
        }
        if not applied:
            logger.warning("Webhook result not recorded, event moved meanwhile", extra_data=log_data)
            return WorkerOutcome.STALE
        if outcome == WorkerOutcome.FAILED:
            logger.warning(
                "Webhook processing failed",
                extra_data={**log_data, "error": truncate_error(result.error)},
            )
        else:
            logger.info("Webhook processed", extra_data=log_data)
        return outcome

    async def _run_handler(self, job: WebhookJob) -> HandlerResult:
        try:
            handler = self.registry.get(job.provider)
            return await handler.handle(job)
        except AppException as exc:
            return HandlerResult.failed(exc.message)
        except Exception as exc:
            logger.error(
                "Webhook handler raised",
                extra_data={
                    "webhook_event_id": job.webhook_event_id,
                    "provider": job.provider,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return HandlerResult.failed(str(exc) or exc.__class__.__name__)
