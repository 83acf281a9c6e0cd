"""
Database Models
"""
from webhook_pipeline.db.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookProvider,
)

__all__ = [
    "WebhookEvent",
    "WebhookEventStatus",
    "WebhookProvider",
]
