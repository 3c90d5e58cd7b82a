"""
Module: branchbook_kernel.logging_config
Responsibility: JSON-lines logging for the ``branchbook`` logger tree, with
    the actor / branch / transaction / team in scope stamped on every line.
Architecture position: Kernel root.  Imported by every layer; imports
    nothing from the kernel.

Invariants enforced:
    - Context lives in one ContextVar holding an immutable mapping, so a
      bind() is visible to the current thread or task only and is undone
      exactly on exit.
    - Only CONTEXT_FIELDS are accepted; values are stored as strings.
    - configure_logging() installs at most one structured handler, however
      often it is called.  Handlers added by others are left alone.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import IO, Any
from uuid import UUID

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

ROOT_LOGGER = "branchbook"

CONTEXT_FIELDS = frozenset({
    "correlation_id",
    "actor_id",
    "branch_id",
    "transaction_id",
    "team_id",
})

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("branchbook_log_context", default=_EMPTY)


class LogContext:
    """Scoped log fields shared by every branchbook logger."""

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Overlay ``fields`` for the duration of the block.

        None values are ignored, so callers can pass optional ids as-is.
        """
        unknown = set(fields) - CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: header, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                line.setdefault(key, value)
        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)
        return json.dumps(line, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Child of the ``branchbook`` logger, e.g. ``services.edit``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _is_structured(handler: logging.Handler) -> bool:
    return isinstance(handler.formatter, StructuredFormatter)


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: IO[str] | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``branchbook`` logger once."""
    root = logging.getLogger(ROOT_LOGGER)
    if any(_is_structured(h) for h in root.handlers):
        return
    handler = handler or logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False


def reset_logging() -> None:
    """Detach structured handlers and restore the default level (tests)."""
    root = logging.getLogger(ROOT_LOGGER)
    for handler in [h for h in root.handlers if _is_structured(h)]:
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
