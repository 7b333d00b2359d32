"""Tests for the structured logging system (pos_kernel/logging_config.py)."""

import json
import logging
import threading
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from pos_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
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
        assert record["logger"] == "pos_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("batch_insert_completed", extra={"inserted": 3, "skipped": 1})

        record = _parse_log(stream)
        assert record["inserted"] == 3
        assert record["skipped"] == 1

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="cycle-1", config_id="cfg-9", source_kind="soap")
        get_logger("test").info("fetch_started")

        record = _parse_log(stream)
        assert record["correlation_id"] == "cycle-1"
        assert record["config_id"] == "cfg-9"
        assert record["source_kind"] == "soap"

    def test_pos_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from pos_kernel.exceptions import RequiredFieldMissingError

        try:
            raise RequiredFieldMissingError("raw_transactions", "invoice_no", "BillNo")
        except RequiredFieldMissingError:
            get_logger("test").error("record_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "REQUIRED_FIELD_MISSING"
        assert record["exc_type"] == "RequiredFieldMissingError"
        assert record["exc_target_field"] == "invoice_no"
        assert record["exc_source_path"] == "BillNo"
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "batch_id" not in record

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_values", extra={"transaction_id": uid, "amount": Decimal("10.50")})

        record = _parse_log(stream)
        assert record["transaction_id"] == str(uid)
        assert record["amount"] == "10.50"

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", batch_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "batch_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_outer_value(self):
        LogContext.set(config_id="outer")
        with LogContext.bind(config_id="inner"):
            assert LogContext.get_all()["config_id"] == "inner"
        assert LogContext.get_all()["config_id"] == "outer"

    def test_bind_restores_none(self):
        assert "batch_id" not in LogContext.get_all()
        with LogContext.bind(batch_id=uuid4()):
            assert "batch_id" in LogContext.get_all()
        assert "batch_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(correlation_id="c", not_a_field="ignored"):
            assert LogContext.get_all() == {"correlation_id": "c"}

    def test_fields_not_shared_with_other_threads(self):
        seen = {}
        with LogContext.bind(batch_id="b-1", vendor_name="AcmePOS"):
            worker = threading.Thread(target=lambda: seen.update(LogContext.get_all()))
            worker.start()
            worker.join()
            assert LogContext.get_all() == {"batch_id": "b-1", "vendor_name": "AcmePOS"}
        assert seen == {}

    def test_context_wins_over_same_named_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(batch_id="from-run"):
            get_logger("test").info("rows_grouped", extra={"batch_id": "from-extra"})

        assert _parse_log(stream)["batch_id"] == "from-run"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("pos_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("ingestion.orchestrator").name == "pos_kernel.ingestion.orchestrator"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "pos_kernel.deep.nested.module"
