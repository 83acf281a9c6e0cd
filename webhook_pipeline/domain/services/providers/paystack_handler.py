"""
Paystack handler.

Paystack has no envelope id: the transaction `data.reference` identifies the
event, falling back to `data.id`. The category is in `event`
("charge.success", "subscription.disable", ...).
"""
from __future__ import annotations

from typing import Any

from webhook_pipeline.core.exceptions import InvalidWebhookPayloadError
from webhook_pipeline.db.models.webhook_event import WebhookProvider
from webhook_pipeline.domain.services.providers.base_handler import (
    EventIdentity,
    ProviderHandler,
)


class PaystackHandler(ProviderHandler):
    provider = WebhookProvider.PAYSTACK

    def extract_identity(self, payload: dict[str, Any]) -> EventIdentity:
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}

        event_id = data.get("reference") or data.get("id")
        if not event_id:
            # without an id the event cannot be deduplicated
            raise InvalidWebhookPayloadError(
                self.provider.value, "Missing data.reference and data.id"
            )
        return EventIdentity(
            event_id=str(event_id),
            event_type=str(payload.get("event") or "unknown"),
        )
