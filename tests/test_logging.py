"""
Tests for Logging Infrastructure
"""
import json
import logging
from io import StringIO

import pytest

from webhook_pipeline.core.logging import (
    JSONFormatter,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    set_correlation_id,
)


class TestCorrelationId:

    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()

        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get_correlation_id(self):
        assert set_correlation_id("sweep123") == "sweep123"
        assert get_correlation_id() == "sweep123"

    @pytest.mark.unit
    def test_set_correlation_id_generates_if_none(self):
        assert len(set_correlation_id(None)) == 8


class TestJSONFormatter:

    @pytest.fixture
    def captured(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter(app_name="webhook-pipeline-test"))
        logger = get_logger("tests.json_formatter")
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        yield logger, stream
        logger.removeHandler(handler)

    @pytest.mark.unit
    def test_extra_data_and_app_name(self, captured):
        logger, stream = captured
        set_correlation_id("abc12345")

        logger.info("Webhook processed", extra_data={"webhook_event_id": "e1", "provider": "stripe"})

        entry = json.loads(stream.getvalue().strip())
        assert entry["message"] == "Webhook processed"
        assert entry["app"] == "webhook-pipeline-test"
        assert entry["level"] == "INFO"
        assert entry["correlation_id"] == "abc12345"
        assert entry["extra"] == {"webhook_event_id": "e1", "provider": "stripe"}


class TestLogAsyncOperation:

    @pytest.mark.unit
    async def test_returns_result(self):
        @log_async_operation("unit op")
        async def _op(x):
            return x * 2

        assert await _op(21) == 42

    @pytest.mark.unit
    async def test_reraises(self):
        @log_async_operation("failing op")
        async def _op():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            await _op()
