from __future__ import annotations

import pytest
from loguru import logger

from council_client.services import logger as log_service


@pytest.fixture
def records():
    captured = []
    handler_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
    yield captured
    logger.remove(handler_id)


def test_failed_session_step_logs_warning(records):
    log_service.log_session_step("trace-1", "error", "failed", {"error": "boom"})
    log_service.log_session_step("trace-1", "collecting", "running")

    assert [r["level"].name for r in records] == ["WARNING", "INFO"]
    assert "'trace_id': 'trace-1'" in records[0]["message"]
    assert "'error': 'boom'" in records[0]["message"]


def test_log_event_includes_extra_fields(records):
    log_service.log_event("session_cancelled", "detached", trace_id="trace-2")

    assert records[0]["message"].startswith("EVENT: ")
    assert "'trace_id': 'trace-2'" in records[0]["message"]
