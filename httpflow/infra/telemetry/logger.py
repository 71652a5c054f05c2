"""
Structured Logger
==================

Event-style logging for the lifecycle runtime:

    logger = get_logger(__name__)
    logger.bind(machine="httpClient").info("retry_scheduled", attempt=1, delay_s=0.5)

Design:
  - One log call = one named event plus keyword fields
  - Ambient fields (machine id, request id, trace id) live in a single
    ``ContextVar`` so each asyncio task sees its own values
  - JSON lines outside development, aligned text inside it
  - Disabled levels cost one ``isEnabledFor`` check

Architecture:
  - Lowest telemetry primitive; tracer and metrics log through it
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from types import MappingProxyType
from typing import IO, Any

# ── Ambient context ────────────────────────────────────────────────

_EMPTY: Mapping[str, str] = MappingProxyType({})
_log_context: ContextVar[Mapping[str, str]] = ContextVar("httpflow_log_context", default=_EMPTY)

def set_log_context(**fields: str | None) -> None:
    """Add fields (``machine_id=...``, ``request_id=...``) to the current task's log context."""
    merged = dict(_log_context.get())
    merged.update({k: str(v) for k, v in fields.items() if v is not None})
    _log_context.set(MappingProxyType(merged))

def clear_log_context() -> None:
    _log_context.set(_EMPTY)

@contextmanager
def log_context(**fields: str | None) -> Generator[None, None, None]:
    """Scope context fields to a block; previous values come back on exit."""
    token = _log_context.set(_log_context.get())
    try:
        set_log_context(**fields)
        yield
    finally:
        _log_context.reset(token)

def current_log_context() -> Mapping[str, str]:
    return _log_context.get()

# ── Formatter ──────────────────────────────────────────────────────

# LogRecord attributes that are never event fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}
_SCALARS = (str, int, float, bool, type(None))

class StructuredFormatter(logging.Formatter):
    """Renders a record as a JSON object or as one aligned text line."""

    def __init__(self, *, json_output: bool = True, include_traceback: bool = True):
        super().__init__()
        self.json_output = json_output
        self.include_traceback = include_traceback
        self._pid = os.getpid()

    @staticmethod
    def event_fields(record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: value if isinstance(value, _SCALARS) else str(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }

    def _exception(self, record: logging.LogRecord) -> dict[str, Any] | None:
        if not record.exc_info or not self.include_traceback:
            return None
        exc_type, exc, tb = record.exc_info
        return {
            "type": getattr(exc_type, "__name__", None),
            "message": str(exc) if exc is not None else None,
            "traceback": traceback.format_exception(exc_type, exc, tb) if tb else None,
        }

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        context = dict(_log_context.get())
        fields = self.event_fields(record)
        error = self._exception(record)

        if self.json_output:
            entry: dict[str, Any] = {
                "timestamp": stamp,
                "level": record.levelname,
                "logger": record.name,
                "event": record.getMessage(),
                "function": record.funcName,
                "line": record.lineno,
                "pid": self._pid,
                "context": context,
            }
            if fields:
                entry["data"] = fields
            if error:
                entry["exception"] = error
            return json.dumps(entry, default=str, ensure_ascii=False)

        scope = "/".join(
            part for part in (context.get("machine_id"), context.get("request_id", "")[:8]) if part
        ) or "-"
        text = (
            f"{stamp} | {record.levelname:8s} | {scope} | "
            f"{record.name}:{record.lineno} | {record.getMessage()}"
        )
        if fields:
            text += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        if error and error["traceback"]:
            text += "\n" + "".join(error["traceback"]).rstrip()
        return text

# ── Logger ─────────────────────────────────────────────────────────

class StructuredLogger:
    """
    Event logger over a stdlib ``logging.Logger``.

    ``bind`` returns a child carrying extra fields; children share the
    underlying stdlib logger, so handlers and levels are configured once.
    """

    __slots__ = ("_fields", "_logger")

    def __init__(self, name: str, fields: Mapping[str, Any] | None = None):
        self._logger = logging.getLogger(name)
        self._fields = dict(fields or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **fields: Any) -> StructuredLogger:
        return StructuredLogger(self._logger.name, {**self._fields, **fields})

    def _emit(self, level: int, event: str, exc: BaseException | None, fields: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            event,
            extra={**self._fields, **fields},
            exc_info=exc,
            stacklevel=3,
        )

    def debug(self, event: str, /, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, None, fields)

    def info(self, event: str, /, **fields: Any) -> None:
        self._emit(logging.INFO, event, None, fields)

    def warning(self, event: str, /, **fields: Any) -> None:
        self._emit(logging.WARNING, event, None, fields)

    def error(self, event: str, /, exc: BaseException | None = None, **fields: Any) -> None:
        """Log at ERROR; ``exc`` attaches its traceback."""
        self._emit(logging.ERROR, event, exc, fields)

# ── Setup ──────────────────────────────────────────────────────────

_configured = False

def setup_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    stream: IO[str] | None = None,
) -> None:
    """
    Install the structured handler on the root logger. Later calls are no-ops.

    Args:
        level: Root level; defaults to ``settings.LOG_LEVEL``.
        json_output: Defaults to ``settings.LOG_JSON``, else JSON everywhere
            except the development environment.
        stream: Output stream (stdout by default).
    """
    global _configured
    if _configured:
        return
    _configured = True

    from httpflow.core.config import get_settings

    cfg = get_settings()
    if json_output is None:
        json_output = cfg.LOG_JSON if cfg.LOG_JSON is not None else cfg.ENVIRONMENT != "development"

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter(json_output=json_output))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.getLevelName((level or cfg.LOG_LEVEL).upper()))

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
