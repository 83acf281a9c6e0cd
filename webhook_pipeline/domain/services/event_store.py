"""
Webhook Event Store - persistence boundary of the reliability pipeline.

Two operations carry the guarantees:

- record_if_new: idempotent ingestion keyed on (provider, event_id).
- transition: conditional status update, applied only while the row is still in
  one of the expected source statuses. Workers, the retry sweep, the manual
  override and the reaper never coordinate in memory; this UPDATE ... WHERE
  status IN (...) is what serializes them.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import delete, or_, and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookProvider,
    is_transition_allowed,
    utcnow,
)

logger = get_logger(__name__)

# Columns a transition may write besides status / retry_count
_TRANSITION_FIELDS = frozenset({
    "error",
    "processed_at",
    "processing_started_at",
    "processing_time_ms",
})
_ERROR_STATUSES = frozenset({WebhookEventStatus.FAILED, WebhookEventStatus.DEAD_LETTER})
MAX_ERROR_LENGTH = 1000


def truncate_error(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class WebhookEventStore:
    """Access to the webhook_events table, bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_if_new(
        self,
        provider: WebhookProvider,
        event_id: str,
        event_type: str,
        payload: dict[str, Any] | None,
    ) -> tuple[WebhookEvent, bool]:
        """
        Insert the event with status=received unless (provider, event_id) exists.

        Returns (event, is_new). A second delivery of the same provider event
        returns the stored row and is_new=False; the caller must not process it.
        """
        # Optimistic: INSERT first inside a savepoint, look up on conflict
        event = WebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=WebhookEventStatus.RECEIVED,
            retry_count=0,
            created_at=utcnow(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(event)
            await self.db.commit()
        except IntegrityError:
            existing = await self.get_by_provider_event_id(provider, event_id)
            if existing is None:
                # the conflicting row was deleted by retention cleanup meanwhile
                raise
            logger.info(
                "Duplicate webhook delivery ignored",
                extra_data={
                    "provider": provider.value,
                    "event_id": event_id,
                    "webhook_event_id": existing.id,
                    "status": existing.status.value,
                },
            )
            return existing, False

        logger.info(
            "Webhook event recorded",
            extra_data={
                "provider": provider.value,
                "event_id": event_id,
                "event_type": event_type,
                "webhook_event_id": event.id,
            },
        )
        return event, True

    async def transition(
        self,
        webhook_event_id: str,
        from_statuses: Iterable[WebhookEventStatus],
        to_status: WebhookEventStatus,
        fields: dict[str, Any] | None = None,
        *,
        increment_retry: bool = False,
    ) -> bool:
        """
        Move the row to `to_status` only if its status is one of `from_statuses`.

        Returns True when the update applied. False means the row is gone or
        another process moved it first; callers treat that as "someone else
        handled it". Source statuses that may not lead to `to_status` (for
        example anything out of `processed`) are ignored.

        Args:
            fields: extra columns to write (error, processed_at,
                processing_started_at, processing_time_ms).
            increment_retry: add one to retry_count in the same UPDATE.
        """
        fields = dict(fields or {})
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"transition cannot write columns: {sorted(unknown)}")
        if "error" in fields and to_status not in _ERROR_STATUSES:
            raise ValueError(f"error can only be written on {sorted(s.value for s in _ERROR_STATUSES)}")

        requested = list(from_statuses)
        sources = [s for s in requested if is_transition_allowed(s, to_status)]
        if not sources:
            logger.warning(
                "Disallowed webhook transition requested",
                extra_data={
                    "webhook_event_id": webhook_event_id,
                    "from_statuses": [s.value for s in requested],
                    "to_status": to_status.value,
                },
            )
            return False

        values: dict[str, Any] = {"status": to_status, **fields}
        if "error" in values:
            values["error"] = truncate_error(values["error"])
        if to_status == WebhookEventStatus.PROCESSED:
            values["error"] = None
        if increment_retry:
            values["retry_count"] = WebhookEvent.retry_count + 1

        result = await self.db.execute(
            update(WebhookEvent)
            .where(
                WebhookEvent.id == webhook_event_id,
                WebhookEvent.status.in_(sources),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        applied = result.rowcount == 1
        logger.debug(
            "Webhook transition applied" if applied else "Webhook transition not applied",
            extra_data={
                "webhook_event_id": webhook_event_id,
                "from_statuses": [s.value for s in sources],
                "to_status": to_status.value,
                "increment_retry": increment_retry,
            },
        )
        return applied

    async def get(self, webhook_event_id: str) -> WebhookEvent | None:
        """Fresh read of one row (bypasses stale identity-map state)."""
        result = await self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.id == webhook_event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_event_id(
        self, provider: WebhookProvider, event_id: str
    ) -> WebhookEvent | None:
        result = await self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_retry_candidates(self, max_retries: int, scan_limit: int) -> list[WebhookEvent]:
        """failed / pending_retry rows under the retry budget, oldest first, at most scan_limit."""
        result = await self.db.execute(
            select(WebhookEvent)
            .where(
                WebhookEvent.status.in_([
                    WebhookEventStatus.FAILED,
                    WebhookEventStatus.PENDING_RETRY,
                ]),
                WebhookEvent.retry_count < max_retries,
            )
            .order_by(WebhookEvent.created_at, WebhookEvent.id)
            .limit(scan_limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def reap_stale_processing(
        self,
        stale_after: timedelta,
        now: datetime | None = None,
        scan_limit: int = 200,
    ) -> int:
        """
        Move rows stuck in `processing` longer than `stale_after` to `failed`.

        A worker that dies mid-handler never reports back; this hands such rows
        to the retry sweep. Returns the number of rows reclaimed.
        """
        now = now or utcnow()
        threshold = now - stale_after
        result = await self.db.execute(
            select(WebhookEvent.id)
            .where(
                WebhookEvent.status == WebhookEventStatus.PROCESSING,
                or_(
                    WebhookEvent.processing_started_at < threshold,
                    and_(
                        WebhookEvent.processing_started_at.is_(None),
                        WebhookEvent.created_at < threshold,
                    ),
                ),
            )
            .order_by(WebhookEvent.created_at)
            .limit(scan_limit)
        )
        stale_ids = list(result.scalars().all())

        reaped = 0
        for webhook_event_id in stale_ids:
            applied = await self.transition(
                webhook_event_id,
                {WebhookEventStatus.PROCESSING},
                WebhookEventStatus.FAILED,
                {
                    "processed_at": now,
                    "error": f"Processing timed out after {int(stale_after.total_seconds())}s",
                },
            )
            if applied:
                reaped += 1
                logger.warning(
                    "Reclaimed stale processing webhook",
                    extra_data={"webhook_event_id": webhook_event_id},
                )
        return reaped

    async def requeue_stale_received(
        self,
        stale_after: timedelta,
        now: datetime | None = None,
        scan_limit: int = 200,
    ) -> int:
        """
        Move rows left in `received` longer than `stale_after` to `pending_retry`.

        Covers a crash between the insert and the enqueue: redeliveries of such
        an event are duplicates, so only the retry sweep can dispatch it.
        """
        now = now or utcnow()
        threshold = now - stale_after
        result = await self.db.execute(
            select(WebhookEvent.id)
            .where(
                WebhookEvent.status == WebhookEventStatus.RECEIVED,
                WebhookEvent.created_at < threshold,
            )
            .order_by(WebhookEvent.created_at)
            .limit(scan_limit)
        )
        stale_ids = list(result.scalars().all())

        requeued = 0
        for webhook_event_id in stale_ids:
            applied = await self.transition(
                webhook_event_id,
                {WebhookEventStatus.RECEIVED},
                WebhookEventStatus.PENDING_RETRY,
            )
            if applied:
                requeued += 1
                logger.warning(
                    "Handed never-dispatched webhook to retry sweep",
                    extra_data={"webhook_event_id": webhook_event_id},
                )
        return requeued

    async def delete_processed_before(self, cutoff: datetime) -> int:
        """Retention cleanup of successfully processed rows."""
        result = await self.db.execute(
            delete(WebhookEvent).where(
                WebhookEvent.status == WebhookEventStatus.PROCESSED,
                WebhookEvent.processed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
