"""
Job Queue - at-least-once channel carrying webhook jobs to workers.

Production sends a Celery task through the Redis broker. The in-memory queue
keeps jobs in a list; it is used by tests and by local setups without a broker
(JOB_QUEUE_BACKEND=memory).
"""
from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from kombu.exceptions import KombuError

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.exceptions import JobQueueError
from webhook_pipeline.core.logging import get_logger

logger = get_logger(__name__)

PROCESS_WEBHOOK_TASK = "webhook_pipeline.workers.tasks.process_webhook_event"


@dataclass(frozen=True)
class WebhookJob:
    """Enough for a worker to re-run the provider handler and find the row again."""

    provider: str
    payload: dict[str, Any] | None
    webhook_event_id: str

    def to_task_kwargs(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "payload": self.payload,
            "webhook_event_id": self.webhook_event_id,
        }


class JobQueue(ABC):
    """Destination for webhook jobs."""

    @abstractmethod
    async def enqueue(self, job: WebhookJob) -> None:
        """
        Hand one job to the queue.

        Raises:
            JobQueueError: when the job could not be accepted.
        """


class CeleryJobQueue(JobQueue):
    """Publishes jobs as `process_webhook_event` Celery tasks."""

    def __init__(self, celery=None) -> None:
        if celery is None:
            from webhook_pipeline.workers.celery_app import celery_app
            celery = celery_app
        self._celery = celery

    async def enqueue(self, job: WebhookJob) -> None:
        try:
            # send_task blocks on the broker connection
            await asyncio.to_thread(
                self._celery.send_task,
                PROCESS_WEBHOOK_TASK,
                kwargs=job.to_task_kwargs(),
            )
        except (KombuError, OSError) as exc:
            logger.error(
                "Failed to publish webhook job",
                extra_data={"webhook_event_id": job.webhook_event_id, "error": str(exc)},
            )
            raise JobQueueError(
                str(exc), details={"webhook_event_id": job.webhook_event_id}
            ) from exc

        logger.debug(
            "Webhook job published",
            extra_data={"webhook_event_id": job.webhook_event_id, "provider": job.provider},
        )


class InMemoryJobQueue(JobQueue):
    """Keeps jobs in process memory; nothing consumes them automatically."""

    def __init__(self) -> None:
        self.jobs: list[WebhookJob] = []

    async def enqueue(self, job: WebhookJob) -> None:
        self.jobs.append(job)

    def drain(self) -> list[WebhookJob]:
        jobs, self.jobs = self.jobs, []
        return jobs


_queue: JobQueue | None = None
_lock = threading.Lock()


def _create_queue(backend: str) -> JobQueue:
    if backend == "celery":
        return CeleryJobQueue()
    if backend == "memory":
        return InMemoryJobQueue()
    raise ValueError(f"Unknown job queue backend: {backend}")


def get_job_queue() -> JobQueue:
    """Job queue for the configured JOB_QUEUE_BACKEND."""
    global _queue
    if _queue is None:
        with _lock:
            if _queue is None:
                _queue = _create_queue(settings.JOB_QUEUE_BACKEND)
                logger.info(
                    "Job queue initialized",
                    extra_data={"backend": settings.JOB_QUEUE_BACKEND},
                )
    return _queue


def reset_job_queue() -> None:
    """Forget the cached queue. Tests only."""
    global _queue
    with _lock:
        _queue = None
