"""
API Routes
"""
from fastapi import APIRouter

from webhook_pipeline.api.routes.admin_webhooks import router as admin_webhooks_router
from webhook_pipeline.api.webhooks.providers import router as provider_webhooks_router

router = APIRouter()

router.include_router(provider_webhooks_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(admin_webhooks_router, prefix="/admin", tags=["admin"])
