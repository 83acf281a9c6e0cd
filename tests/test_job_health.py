"""
Tests for job health bookkeeping (Redis)
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from webhook_pipeline.domain.services.job_health import (
    JOB_HEALTH_PREFIX,
    JOB_RETRY_SWEEP,
    get_job_health,
    job_schedules,
    record_job_run,
)


class _FakeRedis:
    """Minimal in-memory stand-in for the redis.asyncio client"""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        await asyncio.sleep(0)
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        await asyncio.sleep(0)
        self.store[key] = value
        self.ttls[key] = ex

    async def incr(self, key):
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    async def expire(self, key, seconds):
        self.ttls[key] = seconds


@pytest.fixture
def fake_redis():
    fake = _FakeRedis()
    with patch(
        "webhook_pipeline.domain.services.job_health.get_redis",
        new_callable=AsyncMock,
        return_value=fake,
    ):
        yield fake


@pytest.mark.unit
async def test_record_job_run_writes_record_with_ttl(fake_redis):
    finished = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    await record_job_run(JOB_RETRY_SWEEP, success=True, duration_ms=42, finished_at=finished)
    await record_job_run(JOB_RETRY_SWEEP, success=False, duration_ms=7, error="boom", finished_at=finished)

    key = f"{JOB_HEALTH_PREFIX}{JOB_RETRY_SWEEP}"
    record = json.loads(fake_redis.store[key])
    assert record["run_count"] == 2
    assert record["success"] is False
    assert record["error"] == "boom"
    assert record["last_run_at"] == finished.isoformat()
    assert fake_redis.ttls[key] == 30 * 24 * 60 * 60
    assert fake_redis.ttls[f"{key}:runs"] == 30 * 24 * 60 * 60


@pytest.mark.unit
async def test_overlapping_runs_are_all_counted(fake_redis):
    await asyncio.gather(*[
        record_job_run(JOB_RETRY_SWEEP, success=True, duration_ms=i) for i in range(5)
    ])

    entry = {e["job"]: e for e in await get_job_health()}[JOB_RETRY_SWEEP]
    assert entry["run_count"] == 5
    assert fake_redis.store[f"{JOB_HEALTH_PREFIX}{JOB_RETRY_SWEEP}:runs"] == "5"


@pytest.mark.unit
async def test_never_run_jobs_are_stale(fake_redis):
    report = await get_job_health()

    assert {entry["job"] for entry in report} == set(job_schedules())
    assert all(entry["stale"] for entry in report)
    assert all(entry["run_count"] == 0 for entry in report)


@pytest.mark.unit
async def test_staleness_is_twice_the_interval(fake_redis):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    interval = job_schedules()[JOB_RETRY_SWEEP]

    await record_job_run(
        JOB_RETRY_SWEEP, success=True, duration_ms=1,
        finished_at=now - timedelta(seconds=2 * interval - 1),
    )
    fresh = {e["job"]: e for e in await get_job_health(now=now)}[JOB_RETRY_SWEEP]

    await record_job_run(
        JOB_RETRY_SWEEP, success=True, duration_ms=1,
        finished_at=now - timedelta(seconds=2 * interval + 1),
    )
    late = {e["job"]: e for e in await get_job_health(now=now)}[JOB_RETRY_SWEEP]

    assert fresh["stale"] is False
    assert late["stale"] is True


@pytest.mark.unit
async def test_redis_outage_is_not_raised():
    with patch(
        "webhook_pipeline.domain.services.job_health.get_redis",
        new_callable=AsyncMock,
        side_effect=RedisConnectionError("refused"),
    ):
        await record_job_run(JOB_RETRY_SWEEP, success=True, duration_ms=1)
        report = await get_job_health()

    assert all(entry["stale"] for entry in report)
