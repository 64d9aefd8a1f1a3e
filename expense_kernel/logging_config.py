"""Structured JSON logging for the expense kernel."""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Request-scoped log fields (acting user, expense, company) held in
    ``ContextVar``s, so they follow the current thread or task.
    """

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"expense_log_{name}", default=None)
        for name in ("actor_id", "expense_id", "company_id")
    }

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields only."""
        return {
            name: var.get() for name, var in cls._vars.items() if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_LogContextManager":
        """
        Bind fields for the duration of a ``with`` block; the previous
        values come back on exit.  None leaves a field untouched.

        Raises:
            TypeError: Unknown field name.
        """
        unknown = set(fields) - set(cls._vars)
        if unknown:
            raise TypeError(f"unknown log context fields: {sorted(unknown)}")
        return _LogContextManager(
            {name: str(val) for name, val in fields.items() if val is not None}
        )


class _LogContextManager:

    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Any]] = []

    def __enter__(self) -> "type[LogContext]":
        for name, val in self._fields.items():
            var = LogContext._vars[name]
            self._tokens.append((var, var.set(val)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    """UUIDs, dates and Decimals as strings; enums by value."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    return repr(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    # ExpenseKernelError subclasses carry a code plus structured attributes
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for key, val in vars(exc).items():
        if not key.startswith("_") and key != "code":
            fields[f"exc_{key}"] = val
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; bound context beats ``extra`` keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS:
                payload.setdefault(key, val)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "expense_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the expense_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure the expense_kernel logger hierarchy (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
