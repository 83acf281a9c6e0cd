"""
Celery Tasks for the webhook pipeline

- process_webhook_event: worker side of the job queue
- run_retry_sweep / reap_stale_processing / cleanup_old_webhook_events: beat jobs,
  each run recorded in job health
"""
from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Awaitable, Callable

from webhook_pipeline.workers.celery_app import celery_app
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger, set_correlation_id
from webhook_pipeline.db.database import get_task_session
from webhook_pipeline.db.models.webhook_event import utcnow
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.job_health import (
    JOB_RETENTION_CLEANUP,
    JOB_RETRY_SWEEP,
    JOB_STALE_REAPER,
    record_job_run,
)
from webhook_pipeline.domain.services.job_queue import WebhookJob, get_job_queue
from webhook_pipeline.domain.services.providers.registry import get_handler_registry
from webhook_pipeline.domain.services.retry_policy import RetryPolicy
from webhook_pipeline.domain.services.retry_sweep import RetrySweepService
from webhook_pipeline.domain.services.webhook_worker import WebhookWorker

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # the Redis singleton is bound to this loop; drop it before the loop closes
            from webhook_pipeline.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _tracked(job_name: str, body: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    """Run a periodic job body and record the outcome in job health."""
    started = time.monotonic()
    try:
        result = await body()
    except Exception as e:
        await record_job_run(
            job_name,
            success=False,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=str(e),
        )
        raise
    await record_job_run(
        job_name,
        success=True,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return result


@celery_app.task(name="webhook_pipeline.workers.tasks.process_webhook_event")
def process_webhook_event(provider: str, payload: dict | None, webhook_event_id: str):
    """Execute one webhook job. Handler errors end in `failed`, never in a task error."""
    job = WebhookJob(provider=provider, payload=payload, webhook_event_id=webhook_event_id)

    async def _process():
        async with get_task_session() as db:
            worker = WebhookWorker(WebhookEventStore(db), get_handler_registry())
            outcome = await worker.process(job)
            return {"webhook_event_id": webhook_event_id, "outcome": outcome.value}

    return run_async(_process())


@celery_app.task(name="webhook_pipeline.workers.tasks.run_retry_sweep")
def run_retry_sweep():
    """Promote due failed events back to the queue, dead-letter exhausted ones."""

    async def _sweep():
        async with get_task_session() as db:
            sweep = RetrySweepService(
                WebhookEventStore(db),
                get_job_queue(),
                RetryPolicy.from_settings(),
            )
            result = await sweep.run()
            return result.to_dict()

    return run_async(_tracked(JOB_RETRY_SWEEP, _sweep))


@celery_app.task(name="webhook_pipeline.workers.tasks.reap_stale_processing")
def reap_stale_processing():
    """
    Return events stuck in `processing` (worker died mid-handler) to `failed`,
    and hand events never dispatched out of `received` to the retry sweep.
    """

    async def _reap():
        stale_after = timedelta(seconds=settings.WEBHOOK_STALE_PROCESSING_SECONDS)
        async with get_task_session() as db:
            store = WebhookEventStore(db)
            reaped = await store.reap_stale_processing(
                stale_after, scan_limit=settings.WEBHOOK_SWEEP_SCAN_LIMIT,
            )
            requeued = await store.requeue_stale_received(
                stale_after, scan_limit=settings.WEBHOOK_SWEEP_SCAN_LIMIT,
            )
            if reaped or requeued:
                logger.warning(
                    "Stale webhooks reclaimed",
                    extra_data={"reaped": reaped, "requeued": requeued},
                )
            return {"reaped": reaped, "requeued": requeued}

    return run_async(_tracked(JOB_STALE_REAPER, _reap))


@celery_app.task(name="webhook_pipeline.workers.tasks.cleanup_old_webhook_events")
def cleanup_old_webhook_events(days: int | None = None):
    """Delete processed webhook events older than the retention window."""
    days = days if days is not None else settings.WEBHOOK_RETENTION_DAYS

    async def _cleanup():
        async with get_task_session() as db:
            cutoff = utcnow() - timedelta(days=days)
            deleted = await WebhookEventStore(db).delete_processed_before(cutoff)
            logger.info(
                "Cleaned up old webhook events",
                extra_data={"deleted": deleted, "cutoff_days": days},
            )
            return {"deleted": deleted}

    return run_async(_tracked(JOB_RETENTION_CLEANUP, _cleanup))
