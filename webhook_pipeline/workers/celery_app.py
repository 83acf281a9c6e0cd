"""
Celery Application Configuration
"""
from celery import Celery

from webhook_pipeline.core.config import settings

celery_app = Celery(
    "webhook_pipeline",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["webhook_pipeline.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    # at-least-once: ack after the task body, redeliver if the worker dies
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "webhook_pipeline.workers.tasks.process_webhook_event": {
            "queue": settings.WEBHOOK_QUEUE_NAME,
        },
    },
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "webhook-retry-sweep": {
        "task": "webhook_pipeline.workers.tasks.run_retry_sweep",
        "schedule": float(settings.WEBHOOK_SWEEP_INTERVAL_SECONDS),
    },
    "webhook-stale-reaper": {
        "task": "webhook_pipeline.workers.tasks.reap_stale_processing",
        "schedule": float(settings.WEBHOOK_REAPER_INTERVAL_SECONDS),
    },
    "cleanup-old-webhook-events-daily": {
        "task": "webhook_pipeline.workers.tasks.cleanup_old_webhook_events",
        "schedule": 86400.0,  # 24 hours
    },
}
