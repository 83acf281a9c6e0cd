"""
Retry Policy - front-loaded backoff schedule for failed webhook events.

The delay before attempt n is delays[min(n, last)], so the schedule grows over
the first configured steps and then stays flat at the last delay.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from webhook_pipeline.core.config import Settings, settings
from webhook_pipeline.db.models.webhook_event import WebhookEvent


@dataclass(frozen=True)
class RetryPolicy:
    delays: tuple[timedelta, ...]
    max_retries: int

    def __post_init__(self) -> None:
        if not self.delays:
            raise ValueError("RetryPolicy needs at least one delay")
        if any(d < timedelta(0) for d in self.delays):
            raise ValueError("RetryPolicy delays must not be negative")
        if self.max_retries < 1:
            raise ValueError("RetryPolicy max_retries must be at least 1")

    @classmethod
    def from_seconds(cls, delays_seconds: Sequence[int], max_retries: int) -> "RetryPolicy":
        return cls(
            delays=tuple(timedelta(seconds=s) for s in delays_seconds),
            max_retries=max_retries,
        )

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RetryPolicy":
        return cls.from_seconds(config.retry_delays_seconds, config.WEBHOOK_MAX_RETRIES)

    def delay(self, retry_count: int) -> timedelta:
        """Minimum wait before the attempt following `retry_count` earlier retries."""
        if retry_count < 0:
            retry_count = 0
        return self.delays[min(retry_count, len(self.delays) - 1)]

    def due_at(self, event: WebhookEvent) -> datetime:
        anchor = event.processed_at or event.created_at
        return anchor + self.delay(event.retry_count)

    def is_due(self, event: WebhookEvent, now: datetime) -> bool:
        return now >= self.due_at(event)

    def exhausted_by_next_attempt(self, retry_count: int) -> bool:
        """True when dispatching one more attempt would reach the retry budget."""
        return retry_count + 1 >= self.max_retries
