"""
Tests for Celery tasks - webhook_pipeline/workers/tasks.py

Covers:
- process_webhook_event (worker wiring)
- run_retry_sweep / reap_stale_processing / cleanup_old_webhook_events
- job health recording around periodic tasks
- Celery configuration (routing, at-least-once flags, beat schedule)
- event loop handling
"""
import asyncio
from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from webhook_pipeline.db.models.webhook_event import WebhookEventStatus, utcnow
from webhook_pipeline.domain.services.job_health import (
    JOB_RETENTION_CLEANUP,
    JOB_RETRY_SWEEP,
    JOB_STALE_REAPER,
)


@contextmanager
def _patch_run_async_for_test():
    """
    Celery tasks are sync and call run_async(), which creates its own loop.
    Tests already run inside a loop, so the coroutine runs on a fresh loop in
    a worker thread instead.
    """
    import concurrent.futures

    def _test_run_async(coro):
        from webhook_pipeline.core.logging import set_correlation_id
        set_correlation_id()

        def _run_in_thread():
            new_loop = asyncio.new_event_loop()
            try:
                return new_loop.run_until_complete(coro)
            finally:
                new_loop.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(_run_in_thread)
            return future.result(timeout=30)

    with patch("webhook_pipeline.workers.tasks.run_async", side_effect=_test_run_async):
        yield


@contextmanager
def _patch_task_session(db_session):
    with patch("webhook_pipeline.workers.tasks.get_task_session") as mock_session_ctx:
        mock_session_ctx.return_value.__aenter__ = AsyncMock(return_value=db_session)
        mock_session_ctx.return_value.__aexit__ = AsyncMock(return_value=None)
        yield


@pytest.fixture
def record_job_run():
    with patch("webhook_pipeline.workers.tasks.record_job_run", new_callable=AsyncMock) as mock:
        yield mock


class TestProcessWebhookEvent:

    @pytest.mark.integration
    async def test_processes_received_event(self, db_session, store, registry, make_event):
        from webhook_pipeline.workers.tasks import process_webhook_event

        event = await make_event(event_type="charge.succeeded")

        with _patch_run_async_for_test(), _patch_task_session(db_session), patch(
            "webhook_pipeline.workers.tasks.get_handler_registry", return_value=registry
        ):
            result = process_webhook_event(
                provider="stripe", payload=event.payload, webhook_event_id=event.id
            )

        assert result == {"webhook_event_id": event.id, "outcome": "processed"}
        assert (await store.get(event.id)).status == WebhookEventStatus.PROCESSED

    @pytest.mark.integration
    async def test_handler_error_does_not_raise(self, db_session, store, registry, make_event):
        from webhook_pipeline.workers.tasks import process_webhook_event

        def _explode(payload):
            raise RuntimeError("downstream unavailable")

        registry.get("stripe").on("charge.succeeded", _explode)
        event = await make_event(event_type="charge.succeeded")

        with _patch_run_async_for_test(), _patch_task_session(db_session), patch(
            "webhook_pipeline.workers.tasks.get_handler_registry", return_value=registry
        ):
            result = process_webhook_event(
                provider="stripe", payload=event.payload, webhook_event_id=event.id
            )

        assert result["outcome"] == "failed"
        assert (await store.get(event.id)).error == "downstream unavailable"


class TestPeriodicTasks:

    @pytest.mark.integration
    async def test_retry_sweep_task(self, db_session, store, make_event, memory_queue, record_job_run):
        from webhook_pipeline.workers.tasks import run_retry_sweep

        event = await make_event(
            status=WebhookEventStatus.FAILED, processed_at=utcnow() - timedelta(hours=1)
        )

        with _patch_run_async_for_test(), _patch_task_session(db_session), patch(
            "webhook_pipeline.workers.tasks.get_job_queue", return_value=memory_queue
        ):
            result = run_retry_sweep()

        assert result["retried"] == 1
        assert (await store.get(event.id)).status == WebhookEventStatus.PENDING_RETRY
        record_job_run.assert_awaited_once()
        assert record_job_run.await_args.args == (JOB_RETRY_SWEEP,)
        assert record_job_run.await_args.kwargs["success"] is True

    @pytest.mark.integration
    async def test_reaper_task(self, db_session, store, make_event, record_job_run):
        from webhook_pipeline.workers.tasks import reap_stale_processing

        stuck = await make_event(
            status=WebhookEventStatus.PROCESSING,
            processing_started_at=utcnow() - timedelta(hours=1),
        )

        with _patch_run_async_for_test(), _patch_task_session(db_session):
            result = reap_stale_processing()

        assert result == {"reaped": 1, "requeued": 0}
        assert (await store.get(stuck.id)).status == WebhookEventStatus.FAILED
        assert record_job_run.await_args.args == (JOB_STALE_REAPER,)

    @pytest.mark.integration
    async def test_reaper_task_requeues_stranded_received(
        self, db_session, store, make_event, record_job_run
    ):
        from webhook_pipeline.workers.tasks import reap_stale_processing

        stranded = await make_event(
            status=WebhookEventStatus.RECEIVED,
            created_at=utcnow() - timedelta(hours=1),
        )

        with _patch_run_async_for_test(), _patch_task_session(db_session):
            result = reap_stale_processing()

        assert result == {"reaped": 0, "requeued": 1}
        assert (await store.get(stranded.id)).status == WebhookEventStatus.PENDING_RETRY

    @pytest.mark.integration
    async def test_cleanup_task(self, db_session, store, make_event, record_job_run):
        from webhook_pipeline.workers.tasks import cleanup_old_webhook_events

        old = await make_event(
            status=WebhookEventStatus.PROCESSED, processed_at=utcnow() - timedelta(days=60)
        )
        failed = await make_event(
            status=WebhookEventStatus.FAILED, processed_at=utcnow() - timedelta(days=60)
        )

        with _patch_run_async_for_test(), _patch_task_session(db_session):
            result = cleanup_old_webhook_events(days=30)

        assert result == {"deleted": 1}
        assert await store.get(old.id) is None
        assert await store.get(failed.id) is not None
        assert record_job_run.await_args.args == (JOB_RETENTION_CLEANUP,)

    @pytest.mark.integration
    async def test_failed_periodic_run_is_recorded(self, db_session, record_job_run):
        from webhook_pipeline.workers.tasks import reap_stale_processing

        with _patch_run_async_for_test(), _patch_task_session(db_session), patch(
            "webhook_pipeline.workers.tasks.WebhookEventStore.reap_stale_processing",
            new_callable=AsyncMock,
            side_effect=RuntimeError("db gone"),
        ):
            with pytest.raises(RuntimeError):
                reap_stale_processing()

        assert record_job_run.await_args.kwargs["success"] is False
        assert record_job_run.await_args.kwargs["error"] == "db gone"


class TestCeleryConfig:

    @pytest.mark.unit
    def test_at_least_once_delivery_flags(self):
        from webhook_pipeline.workers.celery_app import celery_app

        assert celery_app.conf.task_acks_late is True
        assert celery_app.conf.task_reject_on_worker_lost is True

    @pytest.mark.unit
    def test_webhook_task_routed_to_webhook_queue(self):
        from webhook_pipeline.core.config import settings
        from webhook_pipeline.domain.services.job_queue import PROCESS_WEBHOOK_TASK
        from webhook_pipeline.workers.celery_app import celery_app

        assert celery_app.conf.task_routes[PROCESS_WEBHOOK_TASK] == {
            "queue": settings.WEBHOOK_QUEUE_NAME
        }

    @pytest.mark.unit
    def test_beat_schedule_covers_periodic_jobs(self):
        from webhook_pipeline.workers.celery_app import celery_app

        tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert tasks == {
            "webhook_pipeline.workers.tasks.run_retry_sweep",
            "webhook_pipeline.workers.tasks.reap_stale_processing",
            "webhook_pipeline.workers.tasks.cleanup_old_webhook_events",
        }

    @pytest.mark.unit
    def test_registered_task_names(self):
        from webhook_pipeline.domain.services.job_queue import PROCESS_WEBHOOK_TASK
        from webhook_pipeline.workers.tasks import process_webhook_event

        assert process_webhook_event.name == PROCESS_WEBHOOK_TASK


class TestEventLoop:

    @pytest.mark.unit
    def test_run_async_returns_result_and_closes_loop(self):
        from webhook_pipeline.workers.tasks import run_async

        async def _answer():
            return asyncio.get_running_loop()

        with patch("webhook_pipeline.core.redis_client.close_redis", new_callable=AsyncMock) as close:
            loop = run_async(_answer())

        assert loop.is_closed()
        close.assert_awaited_once()
