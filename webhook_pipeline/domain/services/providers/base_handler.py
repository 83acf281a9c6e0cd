"""
Provider handler interface.

Each payment provider knows two things the pipeline cannot guess:
how to read the event identity from a raw payload, and which callback
interprets a given event type. Interpretation itself (charge succeeded,
subscription canceled, ...) lives outside the pipeline and is plugged in
through `on()`.
"""
from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import WebhookProvider
from webhook_pipeline.domain.services.job_queue import WebhookJob

logger = get_logger(__name__)


@dataclass(frozen=True)
class EventIdentity:
    event_id: str
    event_type: str


@dataclass(frozen=True)
class HandlerResult:
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "HandlerResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "HandlerResult":
        return cls(success=False, error=error)


# A callback receives the raw payload. It may return None (success),
# a HandlerResult, or raise.
EventCallback = Callable[
    [dict[str, Any]],
    Union[None, HandlerResult, Awaitable[Optional[HandlerResult]]],
]


class ProviderHandler(ABC):
    """Identity extraction and per-event-type dispatch for one provider."""

    provider: WebhookProvider

    def __init__(self) -> None:
        self._callbacks: dict[str, EventCallback] = {}

    @abstractmethod
    def extract_identity(self, payload: dict[str, Any]) -> EventIdentity:
        """
        Read (event_id, event_type) from a raw payload.

        Raises:
            InvalidWebhookPayloadError: when the payload carries no usable id.
        """

    def on(self, event_type: str, callback: EventCallback) -> None:
        """Register the callback for one event type. A later registration replaces it."""
        self._callbacks[event_type] = callback

    def has_callback(self, event_type: str) -> bool:
        return event_type in self._callbacks

    @property
    def event_types(self) -> list[str]:
        return sorted(self._callbacks)

    async def handle(self, job: WebhookJob) -> HandlerResult:
        """
        Run the callback registered for the job's event type.

        Event types without a callback are logged and reported as success, so
        they are not retried forever. Exceptions from the callback propagate to
        the worker.
        """
        payload = job.payload or {}
        identity = self.extract_identity(payload)
        callback = self._callbacks.get(identity.event_type)
        if callback is None:
            logger.info(
                "Unhandled webhook event type",
                extra_data={
                    "provider": self.provider.value,
                    "event_type": identity.event_type,
                    "webhook_event_id": job.webhook_event_id,
                },
            )
            return HandlerResult.ok()

        result = callback(payload)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            return HandlerResult.ok()
        return result
