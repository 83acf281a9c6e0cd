"""
Payment provider handlers

Event identity extraction and per-event-type callback dispatch.
"""
from webhook_pipeline.domain.services.providers.base_handler import (
    EventIdentity,
    HandlerResult,
    ProviderHandler,
)
from webhook_pipeline.domain.services.providers.registry import (
    HandlerRegistry,
    get_handler_registry,
    parse_provider,
    reset_handler_registry,
)

__all__ = [
    "EventIdentity",
    "HandlerResult",
    "ProviderHandler",
    "HandlerRegistry",
    "get_handler_registry",
    "parse_provider",
    "reset_handler_registry",
]
