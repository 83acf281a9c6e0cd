from datetime import datetime, timedelta

import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import integers, lists

from webhook_pipeline.core.config import Settings
from webhook_pipeline.db.models.webhook_event import WebhookEvent, WebhookEventStatus
from webhook_pipeline.domain.services.retry_policy import RetryPolicy

T0 = datetime(2024, 1, 1, 12, 0, 0)


def _event(retry_count: int = 0, processed_at: datetime | None = None) -> WebhookEvent:
    return WebhookEvent(
        status=WebhookEventStatus.FAILED,
        retry_count=retry_count,
        created_at=T0,
        processed_at=processed_at,
    )


def test_delay_follows_schedule_then_flattens(policy) -> None:
    assert policy.delay(0) == timedelta(minutes=1)
    assert policy.delay(1) == timedelta(minutes=5)
    assert policy.delay(2) == timedelta(minutes=30)
    assert policy.delay(3) == timedelta(hours=1)
    assert policy.delay(4) == timedelta(hours=4)
    assert policy.delay(10_000) == timedelta(hours=4)


def test_negative_retry_count_uses_first_delay(policy) -> None:
    assert policy.delay(-3) == timedelta(minutes=1)


def test_due_at_anchors_on_processed_at_when_present(policy) -> None:
    processed_at = T0 + timedelta(minutes=10)

    assert policy.due_at(_event(retry_count=0)) == T0 + timedelta(minutes=1)
    assert policy.due_at(_event(retry_count=1, processed_at=processed_at)) == processed_at + timedelta(minutes=5)


def test_is_due_boundary(policy) -> None:
    event = _event(retry_count=0)

    assert policy.is_due(event, T0 + timedelta(seconds=59)) is False
    assert policy.is_due(event, T0 + timedelta(seconds=60)) is True


def test_exhausted_by_next_attempt(policy) -> None:
    assert policy.exhausted_by_next_attempt(3) is False
    assert policy.exhausted_by_next_attempt(4) is True


@pytest.mark.parametrize(
    "delays, max_retries",
    [
        ((), 5),
        ((60, -1), 5),
        ((60,), 0),
    ],
)
def test_invalid_policy_rejected(delays, max_retries) -> None:
    with pytest.raises(ValueError):
        RetryPolicy.from_seconds(delays, max_retries)


def test_from_settings_reads_configured_schedule() -> None:
    config = Settings(WEBHOOK_RETRY_DELAYS_SECONDS="10, 20", WEBHOOK_MAX_RETRIES=3)

    policy = RetryPolicy.from_settings(config)

    assert policy.delays == (timedelta(seconds=10), timedelta(seconds=20))
    assert policy.max_retries == 3


def test_default_schedule_is_1m_5m_30m_1h_4h() -> None:
    config = Settings(_env_file=None)

    assert config.retry_delays_seconds == [60, 300, 1800, 3600, 14400]
    assert config.WEBHOOK_MAX_RETRIES == 5


@pytest.mark.parametrize("raw", ["", "a,b", "60,-5"])
def test_settings_reject_bad_delay_lists(raw) -> None:
    with pytest.raises(ValueError):
        Settings(WEBHOOK_RETRY_DELAYS_SECONDS=raw)


def test_settings_reject_zero_max_retries() -> None:
    with pytest.raises(ValueError):
        Settings(WEBHOOK_MAX_RETRIES=0)


@given(
    delays=lists(integers(min_value=0, max_value=10**6), min_size=1, max_size=10),
    retry_count=integers(min_value=-5, max_value=10**6),
)
@h_settings(max_examples=200)
def test_delay_is_always_a_configured_step(delays, retry_count) -> None:
    policy = RetryPolicy.from_seconds(delays, max_retries=3)
    index = min(max(retry_count, 0), len(delays) - 1)

    assert policy.delay(retry_count) == timedelta(seconds=delays[index])


@given(
    delays=lists(integers(min_value=0, max_value=10**6), min_size=1, max_size=10).map(sorted),
    retry_count=integers(min_value=0, max_value=50),
)
def test_non_decreasing_schedule_gives_non_decreasing_delays(delays, retry_count) -> None:
    policy = RetryPolicy.from_seconds(delays, max_retries=3)

    assert policy.delay(retry_count + 1) >= policy.delay(retry_count)
