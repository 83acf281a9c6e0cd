"""
Admin Webhook Endpoints - inspect and operate the webhook pipeline without DB access.

1. Counts and listings (failed, dead-letter, due for retry, all)
2. Manual retry of a single event
3. On-demand retry sweep
4. Periodic job health
"""
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from webhook_pipeline.api.dependencies.admin_auth import require_admin_api_key
from webhook_pipeline.api.dependencies.pipeline import (
    get_manual_override_service,
    get_retry_policy,
    get_retry_sweep_service,
    get_stats_service,
)
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.db.models.webhook_event import WebhookEventStatus, WebhookProvider
from webhook_pipeline.domain.services.job_health import get_job_health
from webhook_pipeline.domain.services.manual_override import ManualOverrideService
from webhook_pipeline.domain.services.retry_policy import RetryPolicy
from webhook_pipeline.domain.services.retry_sweep import RetrySweepService
from webhook_pipeline.domain.services.webhook_stats import MAX_LIST_LIMIT, WebhookStatsService

logger = get_logger(__name__)

router = APIRouter()

_AUTH_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
}


# ─── Pydantic models ────────────────────────────────────────────────────────

class WebhookEventResponse(BaseModel):
    id: str
    provider: WebhookProvider
    event_id: str
    event_type: str
    status: WebhookEventStatus
    retry_count: int
    error: str | None
    created_at: datetime | None
    processed_at: datetime | None
    processing_time_ms: int | None

    class Config:
        from_attributes = True


class WebhookSummaryResponse(BaseModel):
    failed: dict[str, int]
    dead_letter: int = 0
    pending_retry: int = 0
    processed_last_24h: int = 0


class DueForRetryResponse(BaseModel):
    id: str
    provider: str
    event_id: str
    status: str
    retry_count: int
    due_at: datetime
    will_dead_letter: bool


class WebhookRetryResponse(BaseModel):
    webhook_event_id: str
    previous_status: str
    new_status: str
    retry_count: int


class SweepResponse(BaseModel):
    scanned: int
    due: int
    retried: int
    dead_lettered: int
    skipped: int
    enqueue_failed: int


class JobHealthResponse(BaseModel):
    job: str
    interval_seconds: int
    last_run_at: datetime | None
    duration_ms: int | None
    success: bool | None
    error: str | None
    run_count: int = 0
    stale: bool = Field(description="never ran, or last run older than twice the interval")


def _parse_enum(enum_cls, value: Optional[str], field: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(sorted(m.value for m in enum_cls))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {field}. Options: {valid}",
        )


# ─── 1. Counts and listings ─────────────────────────────────────────────────

@router.get(
    "/webhooks/stats",
    response_model=WebhookSummaryResponse,
    summary="Webhook pipeline summary",
    responses=_AUTH_RESPONSES,
)
async def get_webhook_stats(
    _: None = Depends(require_admin_api_key),
    stats: WebhookStatsService = Depends(get_stats_service),
) -> WebhookSummaryResponse:
    return WebhookSummaryResponse(**await stats.get_summary())


@router.get(
    "/webhooks/failed-counts",
    response_model=dict[str, int],
    summary="Failed events per provider",
    responses=_AUTH_RESPONSES,
)
async def get_failed_counts(
    _: None = Depends(require_admin_api_key),
    stats: WebhookStatsService = Depends(get_stats_service),
) -> dict[str, int]:
    return await stats.count_failed_by_provider()


@router.get(
    "/webhooks/dead-letter",
    response_model=list[WebhookEventResponse],
    summary="Dead-lettered events, newest first",
    responses=_AUTH_RESPONSES,
)
async def get_dead_letter(
    _: None = Depends(require_admin_api_key),
    stats: WebhookStatsService = Depends(get_stats_service),
    limit: int = Query(default=settings.WEBHOOK_DEAD_LETTER_PAGE_LIMIT, ge=1, le=settings.WEBHOOK_DEAD_LETTER_PAGE_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> list[WebhookEventResponse]:
    events = await stats.list_dead_letter(limit=limit, offset=offset)
    return [WebhookEventResponse.model_validate(e) for e in events]


@router.get(
    "/webhooks/due",
    response_model=list[DueForRetryResponse],
    summary="Events the next retry sweep would act on",
    responses=_AUTH_RESPONSES,
)
async def get_due_for_retry(
    _: None = Depends(require_admin_api_key),
    stats: WebhookStatsService = Depends(get_stats_service),
    policy: RetryPolicy = Depends(get_retry_policy),
) -> list[DueForRetryResponse]:
    rows = await stats.list_due_for_retry(policy)
    return [DueForRetryResponse(**row) for row in rows]


@router.get(
    "/webhooks/all",
    response_model=list[WebhookEventResponse],
    summary="Recent events with optional filters",
    responses={**_AUTH_RESPONSES, 400: {"description": "Invalid provider or status"}},
)
async def get_all_events(
    _: None = Depends(require_admin_api_key),
    stats: WebhookStatsService = Depends(get_stats_service),
    provider: Optional[str] = Query(default=None, description="stripe | paystack"),
    event_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=MAX_LIST_LIMIT),
) -> list[WebhookEventResponse]:
    events = await stats.list_events(
        provider=_parse_enum(WebhookProvider, provider, "provider"),
        status=_parse_enum(WebhookEventStatus, event_status, "status"),
        limit=limit,
    )
    return [WebhookEventResponse.model_validate(e) for e in events]


# ─── 2. Manual retry ────────────────────────────────────────────────────────

@router.post(
    "/webhooks/{webhook_event_id}/retry",
    response_model=WebhookRetryResponse,
    summary="Retry one event now",
    description=(
        "Moves a failed, pending_retry or dead_letter event back to pending_retry and "
        "enqueues it, ignoring backoff and the retry budget."
    ),
    responses={
        **_AUTH_RESPONSES,
        404: {"description": "Event not found"},
        409: {"description": "Event already processed or currently in flight"},
        422: {"description": "Event has no stored payload"},
        503: {"description": "Job queue unavailable"},
    },
)
async def retry_webhook_event(
    webhook_event_id: str,
    _: None = Depends(require_admin_api_key),
    override: ManualOverrideService = Depends(get_manual_override_service),
) -> WebhookRetryResponse:
    result = await override.retry_one(webhook_event_id)
    logger.info(
        "Admin webhook retry",
        extra_data={"webhook_event_id": webhook_event_id, "retry_count": result.retry_count},
    )
    return WebhookRetryResponse(
        webhook_event_id=result.webhook_event_id,
        previous_status=result.previous_status.value,
        new_status=result.new_status.value,
        retry_count=result.retry_count,
    )


# ─── 3. Sweep ───────────────────────────────────────────────────────────────

@router.post(
    "/webhooks/sweep",
    response_model=SweepResponse,
    summary="Run one retry sweep now",
    responses=_AUTH_RESPONSES,
)
async def trigger_sweep(
    _: None = Depends(require_admin_api_key),
    sweep: RetrySweepService = Depends(get_retry_sweep_service),
) -> SweepResponse:
    result = await sweep.run()
    return SweepResponse(**result.to_dict())


# ─── 4. Job health ──────────────────────────────────────────────────────────

@router.get(
    "/jobs/health",
    response_model=list[JobHealthResponse],
    summary="Last run of each periodic job",
    responses=_AUTH_RESPONSES,
)
async def get_jobs_health(
    _: None = Depends(require_admin_api_key),
) -> list[dict[str, Any]]:
    return await get_job_health()
