"""Tests for the structured logging system (royalty_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from io import StringIO
from uuid import uuid4

import pytest

from royalty_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


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
        assert record["logger"] == "royalty_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "run_locked", extra={"statement_count": 3, "status": "locked"}
        )

        record = _parse_log(stream)
        assert record["statement_count"] == 3
        assert record["status"] == "locked"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(run_id="run-123", actor_id="admin-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["run_id"] == "run-123"
        assert record["actor_id"] == "admin-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_royalty_exception_code_extracted(self):
        """Royalty kernel exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from royalty_kernel.exceptions import InvalidPeriodError

        try:
            raise InvalidPeriodError(
                date(2024, 2, 1), date(2024, 1, 1), "period_end precedes period_start"
            )
        except InvalidPeriodError:
            logger.error("period_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_PERIOD"
        assert record["exc_type"] == "InvalidPeriodError"
        assert record["exc_period_start"] == "2024-02-01"
        assert record["exc_field"] == "period_end"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "run_id" not in record
        assert "correlation_id" not in record

    def test_uuid_and_date_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "with_uuid", extra={"statement_uuid": uid, "period_end": date(2024, 1, 31)}
        )

        record = _parse_log(stream)
        assert record["statement_uuid"] == str(uid)
        assert record["period_end"] == "2024-01-31"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", run_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "run_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(run_id="outer")
        with LogContext.bind(run_id="inner"):
            assert LogContext.get_all()["run_id"] == "inner"
        assert LogContext.get_all()["run_id"] == "outer"

    def test_bind_restores_none(self):
        assert "statement_id" not in LogContext.get_all()
        with LogContext.bind(statement_id="temp"):
            assert LogContext.get_all()["statement_id"] == "temp"
        assert "statement_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(run_id="r", not_a_field="x"):
            assert LogContext.get_all() == {"run_id": "r"}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            run_id="r",
            statement_id="s",
            actor_id="a",
            worker_id="w",
            trace_id="t",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["worker_id"] == "w"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        assert len(logging.getLogger("royalty_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.run").name == "royalty_kernel.services.run"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "royalty_kernel.deep.nested.module"
