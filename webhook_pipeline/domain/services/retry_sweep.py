"""
Retry Sweep - periodic promotion of failed events back through the queue.

One run:
1. scan up to `scan_limit` failed / pending_retry rows under the retry budget,
   oldest first;
2. keep those whose backoff has elapsed;
3. act on at most `batch_size` of them: dead-letter when the next attempt would
   exhaust the budget, otherwise pending_retry (+1 retry) and enqueue.

Losing a transition race is expected (the worker or an operator moved the row)
and only counts as skipped. Enqueue failures leave the row in pending_retry;
the next run picks it up once it is due again.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.exceptions import JobQueueError
from webhook_pipeline.core.logging import get_logger, log_async_operation
from webhook_pipeline.db.models.webhook_event import WebhookEvent, WebhookEventStatus, utcnow
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.job_queue import JobQueue, WebhookJob
from webhook_pipeline.domain.services.retry_policy import RetryPolicy

logger = get_logger(__name__)

_SWEEPABLE = {WebhookEventStatus.FAILED, WebhookEventStatus.PENDING_RETRY}


@dataclass
class SweepResult:
    scanned: int = 0
    due: int = 0
    retried: int = 0
    dead_lettered: int = 0
    skipped: int = 0
    enqueue_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def dead_letter_reason(event: WebhookEvent) -> str:
    return f"Exceeded max retries: {event.error or 'no error recorded'}"


class RetrySweepService:
    def __init__(
        self,
        store: WebhookEventStore,
        queue: JobQueue,
        policy: RetryPolicy,
        scan_limit: int = settings.WEBHOOK_SWEEP_SCAN_LIMIT,
        batch_size: int = settings.WEBHOOK_SWEEP_BATCH_SIZE,
    ):
        self.store = store
        self.queue = queue
        self.policy = policy
        self.scan_limit = scan_limit
        self.batch_size = batch_size

    async def find_due(self, now: datetime | None = None) -> tuple[int, list[WebhookEvent]]:
        """(rows scanned, rows whose backoff elapsed), without the batch cap."""
        now = now or utcnow()
        candidates = await self.store.find_retry_candidates(
            self.policy.max_retries, self.scan_limit
        )
        return len(candidates), [e for e in candidates if self.policy.is_due(e, now)]

    @log_async_operation("webhook retry sweep")
    async def run(self, now: datetime | None = None) -> SweepResult:
        result = SweepResult()
        result.scanned, due = await self.find_due(now)
        result.due = len(due)

        for event in due[: self.batch_size]:
            if self.policy.exhausted_by_next_attempt(event.retry_count):
                await self._dead_letter(event, result)
            else:
                await self._retry(event, result)

        logger.info("Webhook retry sweep finished", extra_data=result.to_dict())
        return result

    async def _dead_letter(self, event: WebhookEvent, result: SweepResult) -> None:
        applied = await self.store.transition(
            event.id,
            _SWEEPABLE,
            WebhookEventStatus.DEAD_LETTER,
            {"error": dead_letter_reason(event)},
        )
        if not applied:
            result.skipped += 1
            return
        result.dead_lettered += 1
        logger.warning(
            "Webhook moved to dead letter",
            extra_data={
                "webhook_event_id": event.id,
                "provider": event.provider.value,
                "event_id": event.event_id,
                "retry_count": event.retry_count,
                "last_error": event.error,
            },
        )

    async def _retry(self, event: WebhookEvent, result: SweepResult) -> None:
        applied = await self.store.transition(
            event.id,
            _SWEEPABLE,
            WebhookEventStatus.PENDING_RETRY,
            increment_retry=True,
        )
        if not applied:
            result.skipped += 1
            return

        try:
            await self.queue.enqueue(WebhookJob(
                provider=event.provider.value,
                payload=event.payload,
                webhook_event_id=event.id,
            ))
        except JobQueueError as exc:
            result.enqueue_failed += 1
            logger.error(
                "Retry enqueue failed, event stays pending_retry",
                extra_data={"webhook_event_id": event.id, "error": exc.message},
            )
            return

        result.retried += 1
        logger.info(
            "Webhook re-enqueued for retry",
            extra_data={
                "webhook_event_id": event.id,
                "provider": event.provider.value,
                "attempt": event.retry_count + 1,
            },
        )
