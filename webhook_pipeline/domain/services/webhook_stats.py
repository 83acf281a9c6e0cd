"""
Webhook Stats - read-only observability queries for operators.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.config import settings
from webhook_pipeline.db.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookProvider,
    utcnow,
)
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.retry_policy import RetryPolicy

MAX_LIST_LIMIT = 200


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class WebhookStatsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count_by_status(self, status: WebhookEventStatus) -> int:
        result = await self.db.execute(
            select(func.count(WebhookEvent.id)).where(WebhookEvent.status == status)
        )
        return result.scalar() or 0

    async def count_failed_by_provider(self) -> dict[str, int]:
        """Number of events currently in `failed`, per provider (every provider listed)."""
        result = await self.db.execute(
            select(WebhookEvent.provider, func.count(WebhookEvent.id))
            .where(WebhookEvent.status == WebhookEventStatus.FAILED)
            .group_by(WebhookEvent.provider)
        )
        counts = {provider.value: 0 for provider in WebhookProvider}
        for provider, count in result.all():
            counts[provider.value] = count
        return counts

    async def list_dead_letter(self, limit: int = 100, offset: int = 0) -> list[WebhookEvent]:
        """Dead-lettered events, newest first. limit is clamped to 1..WEBHOOK_DEAD_LETTER_PAGE_LIMIT."""
        limit = _clamp(limit, 1, settings.WEBHOOK_DEAD_LETTER_PAGE_LIMIT)
        result = await self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.status == WebhookEventStatus.DEAD_LETTER)
            .order_by(WebhookEvent.created_at.desc(), WebhookEvent.id)
            .offset(max(offset, 0))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_summary(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        processed_recent = await self.db.execute(
            select(func.count(WebhookEvent.id)).where(
                WebhookEvent.status == WebhookEventStatus.PROCESSED,
                WebhookEvent.processed_at >= now - timedelta(hours=24),
            )
        )
        return {
            "failed": await self.count_failed_by_provider(),
            "dead_letter": await self._count_by_status(WebhookEventStatus.DEAD_LETTER),
            "pending_retry": await self._count_by_status(WebhookEventStatus.PENDING_RETRY),
            "processed_last_24h": processed_recent.scalar() or 0,
        }

    async def list_due_for_retry(
        self,
        policy: RetryPolicy,
        now: Optional[datetime] = None,
        scan_limit: int = settings.WEBHOOK_SWEEP_SCAN_LIMIT,
    ) -> list[dict[str, Any]]:
        """What the next sweep would act on, with each row's due time. No mutation."""
        now = now or utcnow()
        candidates = await WebhookEventStore(self.db).find_retry_candidates(
            policy.max_retries, scan_limit
        )
        rows = []
        for event in candidates:
            due_at = policy.due_at(event)
            if now < due_at:
                continue
            rows.append({
                "id": event.id,
                "provider": event.provider.value,
                "event_id": event.event_id,
                "status": event.status.value,
                "retry_count": event.retry_count,
                "due_at": due_at,
                "will_dead_letter": policy.exhausted_by_next_attempt(event.retry_count),
            })
        return rows

    async def list_events(
        self,
        provider: Optional[WebhookProvider] = None,
        status: Optional[WebhookEventStatus] = None,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        query = select(WebhookEvent)
        if provider is not None:
            query = query.where(WebhookEvent.provider == provider)
        if status is not None:
            query = query.where(WebhookEvent.status == status)
        result = await self.db.execute(
            query.order_by(WebhookEvent.created_at.desc(), WebhookEvent.id)
            .limit(_clamp(limit, 1, MAX_LIST_LIMIT))
        )
        return list(result.scalars().all())
