"""
Job Health - last-run bookkeeping for periodic jobs, kept in Redis.

Each run writes one JSON record under `job_health:<job name>` and bumps the
run counter `job_health:<job name>:runs`, both with a TTL.
A job is reported stale when it never ran or its last run is older than
twice its schedule interval. Redis failures are logged and never break the
job being tracked.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from redis.exceptions import RedisError

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.core.redis_client import get_redis

logger = get_logger(__name__)

JOB_HEALTH_PREFIX = "job_health:"

JOB_RETRY_SWEEP = "webhook-retry-sweep"
JOB_STALE_REAPER = "webhook-stale-reaper"
JOB_RETENTION_CLEANUP = "webhook-retention-cleanup"

RETENTION_CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60


def job_schedules() -> dict[str, int]:
    """Tracked job name -> expected interval in seconds."""
    return {
        JOB_RETRY_SWEEP: settings.WEBHOOK_SWEEP_INTERVAL_SECONDS,
        JOB_STALE_REAPER: settings.WEBHOOK_REAPER_INTERVAL_SECONDS,
        JOB_RETENTION_CLEANUP: RETENTION_CLEANUP_INTERVAL_SECONDS,
    }


def _key(job_name: str) -> str:
    return f"{JOB_HEALTH_PREFIX}{job_name}"


def _run_count_key(job_name: str) -> str:
    return f"{JOB_HEALTH_PREFIX}{job_name}:runs"


async def record_job_run(
    job_name: str,
    *,
    success: bool,
    duration_ms: int,
    error: Optional[str] = None,
    finished_at: Optional[datetime] = None,
) -> None:
    finished_at = finished_at or datetime.now(timezone.utc)
    try:
        client = await get_redis()
        # atomic across overlapping runs
        run_count = await client.incr(_run_count_key(job_name))
        await client.expire(_run_count_key(job_name), settings.JOB_HEALTH_TTL_SECONDS)
        record = {
            "last_run_at": finished_at.isoformat(),
            "duration_ms": duration_ms,
            "success": success,
            "error": error,
            "run_count": run_count,
        }
        await client.set(_key(job_name), json.dumps(record), ex=settings.JOB_HEALTH_TTL_SECONDS)
    except (RedisError, OSError, ValueError) as e:
        logger.warning(
            "Failed to record job health",
            extra_data={"job": job_name, "error": str(e)},
        )


async def get_job_health(now: Optional[datetime] = None) -> list[dict[str, Any]]:
    """Status of every tracked job, stale ones flagged."""
    now = now or datetime.now(timezone.utc)
    try:
        client = await get_redis()
    except (RedisError, OSError) as e:
        logger.warning("Job health unavailable", extra_data={"error": str(e)})
        client = None

    report = []
    for job_name, interval in job_schedules().items():
        record: dict[str, Any] | None = None
        run_count = None
        if client is not None:
            try:
                raw = await client.get(_key(job_name))
                record = json.loads(raw) if raw else None
                run_count = await client.get(_run_count_key(job_name))
            except (RedisError, OSError, ValueError) as e:
                logger.warning(
                    "Failed to read job health",
                    extra_data={"job": job_name, "error": str(e)},
                )

        entry: dict[str, Any] = {
            "job": job_name,
            "interval_seconds": interval,
            "last_run_at": None,
            "duration_ms": None,
            "success": None,
            "error": None,
            "run_count": 0,
            "stale": True,
        }
        if record:
            entry.update(record)
            last_run_at = datetime.fromisoformat(record["last_run_at"])
            entry["stale"] = (now - last_run_at).total_seconds() > 2 * interval
        if run_count is not None:
            entry["run_count"] = int(run_count)
        report.append(entry)
    return report
