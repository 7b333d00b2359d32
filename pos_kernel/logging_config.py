"""
JSON-lines logging for the POS ingestion pipeline.

Every module logs through ``get_logger(name)``, which places it under the
``pos_kernel`` hierarchy.  Messages are snake_case event names
(``fetch_started``, ``batch_insert_completed``, ``orphan_rows_discarded``);
the data that makes an event useful goes in ``extra``.

While the orchestrator works on one configuration it binds the run's
identity with ``LogContext.bind``, so every line emitted during that run,
from the fetcher down to the inserter, carries the same batch id without
threading it through call signatures::

    with LogContext.bind(batch_id=batch_id, config_id=config.config_id):
        fetcher.fetch(config, since)

One line looks like::

    {"ts": "...", "level": "INFO", "logger": "pos_kernel.ingestion.inserter",
     "message": "batch_insert_completed", "batch_id": "...", "config_id": "...",
     "vendor_name": "AcmePOS", "source_kind": "api", "inserted": 12}
"""

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
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

# Identity of the run a log line belongs to, in output order
_RUN_FIELDS = ("correlation_id", "config_id", "batch_id", "vendor_name", "source_kind")

_run_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"pos_log_{name}", default=None) for name in _RUN_FIELDS
}


class LogContext:
    """
    Per-run log fields held in context variables.

    A new thread starts with every field unset, so the scheduler thread's
    run fields never appear on lines logged by another thread.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set run fields; None values and unknown names are ignored."""
        for name, value in fields.items():
            var = _run_vars.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _run_vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _run_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundRun":
        """Set fields for the duration of a ``with`` block, then restore them."""
        return _BoundRun(fields)


class _BoundRun:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Any]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _run_vars.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    # Canonical rows carry UUID ids, Decimal amounts and date/datetime values
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """``exc_*`` keys for a logged exception, including PosIngestionError data."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for key, value in vars(exc).items():
        if not key.startswith("_") and key not in ("args", "code"):
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, event, run fields, extras."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                line.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_json_default)


_LOGGER_PREFIX = "pos_kernel"


def get_logger(name: str) -> logging.Logger:
    """``get_logger("ingestion.fetchers")`` -> ``pos_kernel.ingestion.fetchers``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the pipeline's logger hierarchy.

    Called once by each entry point (service, single cycle, CLI); later calls
    are no-ops, so calling it again is harmless.  Output goes to
    ``stream`` (default stderr) unless a ready ``handler`` is given.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    pipeline_logger = logging.getLogger(_LOGGER_PREFIX)
    pipeline_logger.setLevel(level)
    pipeline_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    pipeline_logger.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again (tests)."""
    global _configured
    with _lock:
        _configured = False
    pipeline_logger = logging.getLogger(_LOGGER_PREFIX)
    pipeline_logger.handlers.clear()
    pipeline_logger.setLevel(logging.WARNING)
