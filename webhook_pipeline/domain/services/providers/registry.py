"""
Handler Registry - provider -> ProviderHandler dispatch table.

Module-level singleton, same shape as the other lazily built services:
get_handler_registry() / reset_handler_registry().
"""
from __future__ import annotations

import threading
from typing import Optional

from webhook_pipeline.core.exceptions import UnknownProviderError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import WebhookProvider
from webhook_pipeline.domain.services.providers.base_handler import ProviderHandler

logger = get_logger(__name__)


def parse_provider(value: str | WebhookProvider) -> WebhookProvider:
    """Map a path segment or job field to a WebhookProvider."""
    if isinstance(value, WebhookProvider):
        return value
    try:
        return WebhookProvider(value.strip().lower())
    except ValueError:
        raise UnknownProviderError(value)


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[WebhookProvider, ProviderHandler] = {}

    def register(self, handler: ProviderHandler) -> None:
        self._handlers[handler.provider] = handler

    def find(self, provider: str | WebhookProvider) -> Optional[ProviderHandler]:
        try:
            return self._handlers.get(parse_provider(provider))
        except UnknownProviderError:
            return None

    def get(self, provider: str | WebhookProvider) -> ProviderHandler:
        """
        Raises:
            UnknownProviderError: provider is not a WebhookProvider or has no handler.
        """
        parsed = parse_provider(provider)
        handler = self._handlers.get(parsed)
        if handler is None:
            raise UnknownProviderError(parsed.value)
        return handler

    @property
    def providers(self) -> list[WebhookProvider]:
        return list(self._handlers)


def build_default_registry() -> HandlerRegistry:
    from webhook_pipeline.domain.services.providers.paystack_handler import PaystackHandler
    from webhook_pipeline.domain.services.providers.stripe_handler import StripeHandler

    registry = HandlerRegistry()
    registry.register(StripeHandler())
    registry.register(PaystackHandler())
    return registry


_registry: HandlerRegistry | None = None
_lock = threading.Lock()


def get_handler_registry() -> HandlerRegistry:
    global _registry
    if _registry is None:
        with _lock:
            if _registry is None:
                _registry = build_default_registry()
                logger.info(
                    "Handler registry initialized",
                    extra_data={"providers": [p.value for p in _registry.providers]},
                )
    return _registry


def reset_handler_registry() -> None:
    """Drop the registry and its callbacks. Tests only."""
    global _registry
    with _lock:
        _registry = None
