"""
FastAPI dependencies wiring the pipeline services to a request session.

Tests override get_job_queue_dependency / get_handler_registry_dependency via
app.dependency_overrides.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.db.database import get_db
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.ingestion import IngestionService
from webhook_pipeline.domain.services.job_queue import JobQueue, get_job_queue
from webhook_pipeline.domain.services.manual_override import ManualOverrideService
from webhook_pipeline.domain.services.providers.registry import (
    HandlerRegistry,
    get_handler_registry,
)
from webhook_pipeline.domain.services.retry_policy import RetryPolicy
from webhook_pipeline.domain.services.retry_sweep import RetrySweepService
from webhook_pipeline.domain.services.webhook_stats import WebhookStatsService


def get_job_queue_dependency() -> JobQueue:
    return get_job_queue()


def get_handler_registry_dependency() -> HandlerRegistry:
    return get_handler_registry()


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings()


def get_event_store(db: AsyncSession = Depends(get_db)) -> WebhookEventStore:
    return WebhookEventStore(db)


def get_ingestion_service(
    store: WebhookEventStore = Depends(get_event_store),
    queue: JobQueue = Depends(get_job_queue_dependency),
    registry: HandlerRegistry = Depends(get_handler_registry_dependency),
) -> IngestionService:
    return IngestionService(store, queue, registry)


def get_manual_override_service(
    store: WebhookEventStore = Depends(get_event_store),
    queue: JobQueue = Depends(get_job_queue_dependency),
) -> ManualOverrideService:
    return ManualOverrideService(store, queue)


def get_retry_sweep_service(
    store: WebhookEventStore = Depends(get_event_store),
    queue: JobQueue = Depends(get_job_queue_dependency),
    policy: RetryPolicy = Depends(get_retry_policy),
) -> RetrySweepService:
    return RetrySweepService(store, queue, policy)


def get_stats_service(db: AsyncSession = Depends(get_db)) -> WebhookStatsService:
    return WebhookStatsService(db)
