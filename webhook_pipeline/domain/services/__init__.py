"""
Domain Services
"""
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.ingestion import IngestionService
from webhook_pipeline.domain.services.manual_override import ManualOverrideService
from webhook_pipeline.domain.services.retry_policy import RetryPolicy
from webhook_pipeline.domain.services.retry_sweep import RetrySweepService
from webhook_pipeline.domain.services.webhook_stats import WebhookStatsService
from webhook_pipeline.domain.services.webhook_worker import WebhookWorker

__all__ = [
    "WebhookEventStore",
    "IngestionService",
    "ManualOverrideService",
    "RetryPolicy",
    "RetrySweepService",
    "WebhookStatsService",
    "WebhookWorker",
]
