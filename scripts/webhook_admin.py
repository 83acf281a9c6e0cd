#!/usr/bin/env python3
"""
Operator CLI for the webhook pipeline - talks to the database directly.

Usage (from the project root):
    python scripts/webhook_admin.py stats
    python scripts/webhook_admin.py sweep
    python scripts/webhook_admin.py retry <webhook_event_id>

Exit code 0 on success, 1 when the operation was refused (not found,
already processed, conflict...), 2 when sweep / retry are run with the
in-memory job queue.
"""
import sys
import json
import asyncio
import argparse
from pathlib import Path

# allow running from any directory
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from webhook_pipeline.core.config import settings  # noqa: E402
from webhook_pipeline.core.exceptions import AppException  # noqa: E402
from webhook_pipeline.core.logging import setup_logging  # noqa: E402
from webhook_pipeline.core.redis_client import close_redis  # noqa: E402
from webhook_pipeline.db.database import AsyncSessionLocal, engine  # noqa: E402
from webhook_pipeline.domain.services.event_store import WebhookEventStore  # noqa: E402
from webhook_pipeline.domain.services.job_queue import get_job_queue  # noqa: E402
from webhook_pipeline.domain.services.manual_override import ManualOverrideService  # noqa: E402
from webhook_pipeline.domain.services.retry_policy import RetryPolicy  # noqa: E402
from webhook_pipeline.domain.services.retry_sweep import RetrySweepService  # noqa: E402
from webhook_pipeline.domain.services.webhook_stats import WebhookStatsService  # noqa: E402


def _print(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def _queue_is_durable() -> bool:
    """Mutating commands need a queue that outlives this process."""
    if settings.JOB_QUEUE_BACKEND == "memory":
        print(
            "Refusing to run: JOB_QUEUE_BACKEND=memory would mark events pending_retry "
            "without dispatching them. Set JOB_QUEUE_BACKEND=celery.",
            file=sys.stderr,
        )
        return False
    return True


async def cmd_stats(_args) -> int:
    async with AsyncSessionLocal() as db:
        _print(await WebhookStatsService(db).get_summary())
    return 0


async def cmd_sweep(_args) -> int:
    if not _queue_is_durable():
        return 2
    async with AsyncSessionLocal() as db:
        sweep = RetrySweepService(
            WebhookEventStore(db), get_job_queue(), RetryPolicy.from_settings()
        )
        result = await sweep.run()
    _print(result.to_dict())
    return 0


async def cmd_retry(args) -> int:
    if not _queue_is_durable():
        return 2
    async with AsyncSessionLocal() as db:
        override = ManualOverrideService(WebhookEventStore(db), get_job_queue())
        try:
            result = await override.retry_one(args.webhook_event_id)
        except AppException as e:
            _print(e.to_dict())
            return 1
    _print({
        "webhook_event_id": result.webhook_event_id,
        "previous_status": result.previous_status.value,
        "new_status": result.new_status.value,
        "retry_count": result.retry_count,
    })
    return 0


async def _run(args) -> int:
    try:
        return await args.func(args)
    finally:
        await close_redis()
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Webhook pipeline operator tools")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="failed / dead-letter / pending-retry counts").set_defaults(func=cmd_stats)
    sub.add_parser("sweep", help="run one retry sweep now").set_defaults(func=cmd_sweep)

    retry = sub.add_parser("retry", help="manually retry one event")
    retry.add_argument("webhook_event_id")
    retry.set_defaults(func=cmd_retry)

    args = parser.parse_args()
    setup_logging(level="DEBUG" if settings.DEBUG else "WARNING", json_format=False, app_name=settings.APP_NAME)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
