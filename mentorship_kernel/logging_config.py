"""
Structured JSON logging for the mentorship workflow kernel.

Every record is one JSON object::

    {"ts": ..., "level": "INFO", "logger": "mentorship_kernel.services.escrow_ledger",
     "event": "escrow_status_changed",
     "correlation_id": ..., "project_id": ..., "actor_id": ..., "actor_role": ...,
     "action": "review_iteration",
     "from_status": "escrowed", "to_status": "mentor_released"}

``event`` is the snake_case name passed as the log message.  The workflow
fields come from the LogContext the coordinator binds around each action;
a kernel service logging outside an action may supply ``project_id`` through
``extra`` instead.  Everything else passed in ``extra`` is copied as-is.

A logged exception is rendered under ``error``; workflow errors also carry
their outward code, status and retriable flag there.
"""

from __future__ import annotations

__all__ = [
    "WORKFLOW_FIELDS",
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping
from uuid import UUID

# Fields identifying who is doing what to which project
WORKFLOW_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "project_id",
    "actor_id",
    "actor_role",
    "action",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})

_workflow_context: ContextVar[Mapping[str, str]] = ContextVar(
    "mentorship_workflow_context", default=_EMPTY
)


def _as_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _merged(fields: dict[str, Any]) -> Mapping[str, str]:
    unknown = set(fields) - set(WORKFLOW_FIELDS)
    if unknown:
        raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
    current = dict(_workflow_context.get())
    current.update({k: _as_text(v) for k, v in fields.items() if v is not None})
    return MappingProxyType(current)


class LogContext:
    """Workflow fields attached to every record logged in this thread or task."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Add or replace fields; ``None`` values leave a field untouched."""
        _workflow_context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_workflow_context.get())

    @staticmethod
    def clear() -> None:
        _workflow_context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of the block, then restore the previous context."""
        token = _workflow_context.set(_merged(fields))
        try:
            yield
        finally:
            _workflow_context.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _error_payload(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
        error["status"] = getattr(exc, "http_status", None)
        error["retriable"] = getattr(exc, "retriable", False)
    details = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
    if details:
        error["details"] = details
    return error


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(_workflow_context.get())

        for key, val in vars(record).items():
            if key in _STDLIB_KEYS or key in payload:
                continue
            payload[key] = _as_text(val) if key in WORKFLOW_FIELDS and val is not None else val

        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = _error_payload(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "mentorship_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``mentorship_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``mentorship_kernel`` logger.  Idempotent."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root_logger.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow configure_logging() again (tests)."""
    global _configured
    with _lock:
        _configured = False
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)
