"""
Webhook Event Model - one row per event delivered by a payment provider.

The (provider, event_id) pair is unique, which makes ingestion idempotent.
Status changes after ingestion go through WebhookEventStore.transition only.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from webhook_pipeline.db.database import Base


def utcnow() -> datetime:
    """Naive UTC now; all webhook timestamps are stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_event_pk() -> str:
    return str(uuid.uuid4())


class WebhookProvider(str, enum.Enum):
    STRIPE = "stripe"
    PAYSTACK = "paystack"


class WebhookEventStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    PENDING_RETRY = "pending_retry"
    DEAD_LETTER = "dead_letter"


TERMINAL_STATUSES = frozenset({WebhookEventStatus.PROCESSED, WebhookEventStatus.DEAD_LETTER})

# Every (from, to) pair a conditional transition may apply.
# dead_letter -> pending_retry is reserved for the manual override.
ALLOWED_TRANSITIONS: dict[WebhookEventStatus, frozenset[WebhookEventStatus]] = {
    WebhookEventStatus.RECEIVED: frozenset({
        WebhookEventStatus.PROCESSING,
        WebhookEventStatus.PENDING_RETRY,
    }),
    WebhookEventStatus.PENDING_RETRY: frozenset({
        WebhookEventStatus.PROCESSING,
        WebhookEventStatus.PENDING_RETRY,
        WebhookEventStatus.DEAD_LETTER,
    }),
    WebhookEventStatus.PROCESSING: frozenset({
        WebhookEventStatus.PROCESSED,
        WebhookEventStatus.FAILED,
    }),
    WebhookEventStatus.FAILED: frozenset({
        WebhookEventStatus.PENDING_RETRY,
        WebhookEventStatus.DEAD_LETTER,
    }),
    WebhookEventStatus.DEAD_LETTER: frozenset({
        WebhookEventStatus.PENDING_RETRY,
    }),
    WebhookEventStatus.PROCESSED: frozenset(),
}


def is_transition_allowed(from_status: WebhookEventStatus, to_status: WebhookEventStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


class WebhookEvent(Base):
    """Inbound provider event and its processing state"""

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_event_pk)

    provider = Column(SQLEnum(WebhookProvider), nullable=False)
    event_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)  # raw body, stored verbatim

    status = Column(
        SQLEnum(WebhookEventStatus),
        nullable=False,
        default=WebhookEventStatus.RECEIVED,
    )
    retry_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)

    # Timestamps (naive UTC)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    processing_started_at = Column(DateTime, nullable=True)  # reaper input
    processing_time_ms = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event_id"),
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WebhookEvent(id={self.id}, provider={self.provider}, "
            f"event_id={self.event_id}, status={self.status}, retries={self.retry_count})>"
        )
