"""
Unit tests for logging configuration and request context binding
"""
import json
import logging

import pytest
import structlog

from render_api.core.logging import build_formatter
from render_api.middleware.logging_middleware import (
    bind_client_id,
    bind_render_context,
    get_client_id,
    get_request_id,
)


@pytest.fixture(autouse=True)
def clean_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


def stdlib_record(message, *args):
    return logging.LogRecord("render_api.services.test", logging.WARNING, __file__, 1, message, args, None)


class TestContextBinding:
    @pytest.mark.unit
    def test_ids_read_back(self):
        structlog.contextvars.bind_contextvars(request_id="1a2b3c4d")
        bind_client_id("client-1")
        assert get_request_id() == "1a2b3c4d"
        assert get_client_id() == "client-1"

    @pytest.mark.unit
    def test_empty_values_are_not_bound(self):
        bind_client_id("")
        bind_render_context(cache_key="abc123", job_id=None)
        context = structlog.contextvars.get_contextvars()
        assert get_client_id() == ""
        assert context == {"cache_key": "abc123"}


class TestFormatter:
    @pytest.mark.unit
    def test_stdlib_record_carries_render_context(self):
        bind_render_context(cache_key="abc123", stage="STRATEGY_URL")
        rendered = json.loads(build_formatter("json").format(stdlib_record("Persist failed for %s", "results/ab")))

        assert rendered["event"] == "Persist failed for results/ab"
        assert rendered["level"] == "warning"
        assert rendered["logger"] == "render_api.services.test"
        assert rendered["cache_key"] == "abc123"
        assert rendered["stage"] == "STRATEGY_URL"
        assert "timestamp" in rendered

    @pytest.mark.unit
    def test_console_format_is_plain_text(self):
        bind_render_context(stage="REFINING")
        rendered = build_formatter("console").format(stdlib_record("keeping first pass"))
        assert "keeping first pass" in rendered
        assert "stage=REFINING" in rendered
