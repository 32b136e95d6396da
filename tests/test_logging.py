"""Tests for the structured logging system (sqlflow_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime
from io import StringIO

import pytest

from sqlflow_kernel.domain.workflow import WorkflowStatus
from sqlflow_kernel.exceptions import NotAssigneeError
from sqlflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "sqlflow.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("workflow_step_approved", extra={"step_id": 42, "actor_id": 7})

        record = _parse_log(stream)
        assert record["step_id"] == 42
        assert record["actor_id"] == 7

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", workflow_id=9)
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["workflow_id"] == "9"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise NotAssigneeError(5, 11)
        except NotAssigneeError:
            get_logger("test").exception("approve_failed")

        record = _parse_log(stream)
        assert record["exc_code"] == "NOT_ASSIGNEE"
        assert record["exc_type"] == "NotAssigneeError"
        assert record["exc_user_id"] == 5
        assert record["exc_step_id"] == 11

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "workflow_id" not in record

    def test_datetimes_and_enums_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "workflow_scheduled",
            extra={
                "scheduled_at": datetime(2026, 2, 2, 23, 30),
                "status": WorkflowStatus.EXEC_SCHEDULED,
                "user_ids": frozenset({3, 1}),
            },
        )

        record = _parse_log(stream)
        assert record["scheduled_at"] == "2026-02-02T23:30:00"
        assert record["status"] == "exec_scheduled"
        assert record["user_ids"] == [1, 3]

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO.
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id=3)
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "3"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(workflow_id="outer")
        with LogContext.bind(workflow_id="inner"):
            assert LogContext.get_all()["workflow_id"] == "inner"
        assert LogContext.get_all()["workflow_id"] == "outer"

    def test_bind_restores_none(self):
        assert "record_id" not in LogContext.get_all()
        with LogContext.bind(record_id=12):
            assert LogContext.get_all()["record_id"] == "12"
        assert "record_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(tenant="acme", task_id=4):
            assert LogContext.get_all() == {"task_id": "4"}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            workflow_id="w",
            record_id="r",
            task_id="k",
            trace_id="t",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["trace_id"] == "t"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        assert len(logging.getLogger("sqlflow").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.workflow").name == "sqlflow.services.workflow"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("batch.scheduler").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "sqlflow.batch.scheduler"
