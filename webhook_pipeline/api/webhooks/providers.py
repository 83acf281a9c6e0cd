"""
Payment provider webhook endpoint.

POST /api/webhooks/{provider} - records the event once and hands it to the
queue. Signature verification happens in front of this route.
"""
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from webhook_pipeline.api.dependencies.pipeline import get_ingestion_service
from webhook_pipeline.domain.services.ingestion import IngestionService

router = APIRouter()


class WebhookAckResponse(BaseModel):
    received: bool = True
    status: str
    webhook_event_id: str


@router.post(
    "/{provider}",
    response_model=WebhookAckResponse,
    summary="Receive a provider webhook",
    responses={
        400: {"description": "Payload carries no event identity"},
        404: {"description": "Unknown provider"},
        429: {"description": "Rate limited"},
    },
)
async def receive_webhook(
    provider: str,
    payload: dict[str, Any] = Body(...),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> WebhookAckResponse:
    result = await ingestion.ingest(provider, payload)
    return WebhookAckResponse(status=result.status, webhook_event_id=result.webhook_event_id)
