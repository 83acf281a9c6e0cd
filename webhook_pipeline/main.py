"""
Webhook Pipeline - Main FastAPI Application
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import setup_logging, get_logger
from webhook_pipeline.core.middleware import setup_middleware, setup_exception_handlers
from webhook_pipeline.api.routes import router as api_router
from webhook_pipeline.db.database import engine, Base

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "webhooks", "description": "Inbound payment provider callbacks (Stripe, Paystack)."},
    {
        "name": "admin",
        "description": "Operator tools: failure counts, dead-letter listing, manual retry, sweep, job health.",
    },
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Reliability pipeline for payment provider webhooks: idempotent ingestion, "
        "retries with backoff and dead-lettering."
    ),
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging, webhook rate limit)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from webhook_pipeline.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process answers. Dependencies are not checked, so a DB outage does not trigger a restart.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description="Checks DB, Redis and the Celery broker. 503 with per-dependency detail when degraded.",
    responses={
        200: {
            "description": "All dependencies available",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "redis": "ok", "celery": "ok"}
                }
            },
        },
        503: {
            "description": "At least one dependency unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "redis": "error: redis_unavailable",
                        "celery": "ok",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from webhook_pipeline.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
