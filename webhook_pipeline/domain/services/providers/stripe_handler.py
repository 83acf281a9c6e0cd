"""
Stripe handler - events carry `id` ("evt_...") and `type` at the top level.
"""
from __future__ import annotations

from typing import Any

from webhook_pipeline.core.exceptions import InvalidWebhookPayloadError
from webhook_pipeline.db.models.webhook_event import WebhookProvider
from webhook_pipeline.domain.services.providers.base_handler import (
    EventIdentity,
    ProviderHandler,
)


class StripeHandler(ProviderHandler):
    provider = WebhookProvider.STRIPE

    def extract_identity(self, payload: dict[str, Any]) -> EventIdentity:
        event_id = payload.get("id")
        if not event_id:
            raise InvalidWebhookPayloadError(self.provider.value, "Missing event id")
        return EventIdentity(
            event_id=str(event_id),
            event_type=str(payload.get("type") or "unknown"),
        )
