"""Tests for the structured logging system (expense_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from expense_kernel.exceptions import ExpenseNotPendingError
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests and restore the suite configuration."""
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


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        (record,) = _parse_all_logs(stream)
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "expense_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        expense_id = uuid4()
        get_logger("test").info(
            "with_extras", extra={"amount": Decimal("12.50"), "traced_expense_id": expense_id},
        )

        (record,) = _parse_all_logs(stream)
        assert record["amount"] == "12.50"
        assert record["traced_expense_id"] == str(expense_id)

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ExpenseNotPendingError("e-1", "approved")
        except ExpenseNotPendingError:
            get_logger("test").exception("failed")

        (record,) = _parse_all_logs(stream)
        assert record["exc_type"] == "ExpenseNotPendingError"
        assert record["exc_code"] == "EXPENSE_NOT_PENDING"
        assert record["exc_status"] == "approved"
        assert "traceback" in record

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]


class TestLogContext:

    def test_bound_fields_appear_and_are_restored(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")

        with LogContext.bind(actor_id="actor-1", expense_id="exp-1"):
            logger.info("inside")
            with LogContext.bind(expense_id="exp-2"):
                logger.info("nested")
            logger.info("back")
        logger.info("outside")

        inside, nested, back, outside = _parse_all_logs(stream)
        assert (inside["actor_id"], inside["expense_id"]) == ("actor-1", "exp-1")
        assert nested["expense_id"] == "exp-2"
        assert back["expense_id"] == "exp-1"
        assert "actor_id" not in outside

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(company_id="c-1"):
            get_logger("test").info("clash", extra={"company_id": "other"})
        (record,) = _parse_all_logs(stream)
        assert record["company_id"] == "c-1"

    def test_configure_is_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        get_logger("test").info("once")
        assert len(_parse_all_logs(stream)) == 1

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.bind(request_id="r-1")

    def test_uuid_values_bound_as_strings(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        expense_id = uuid4()
        with LogContext.bind(expense_id=expense_id, company_id=None):
            get_logger("test").info("bound")
        (record,) = _parse_all_logs(stream)
        assert record["expense_id"] == str(expense_id)
        assert "company_id" not in record
