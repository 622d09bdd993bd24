# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Structured logging with job context
# PURPOSE: Consistent, queryable logging across agents and jobs
# CREATED: 19 OCT 2026
# ============================================================================
"""
Structured Logging

Every record emitted while a job is being processed carries the job's
identity (job_id, function, service, cluster_id). Context lives in a
ContextVar: each asyncio task runs in a copy of the context it was created
in, so jobs processed concurrently by one agent never see each other's
fields.

Usage:
    from core.logging import configure_logging, log_context

    configure_logging("DEBUG", json_output=True)

    with log_context(job_id="job-123", function="echo"):
        logger.info("Executing job")   # plain logging.getLogger loggers work

Fields are attached to records by ContextFilter, which configure_logging()
installs on the root handler, so module loggers created with
logging.getLogger(__name__) need no adapter.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass(frozen=True)
class LogContext:
    """Fields describing what the current task is working on."""
    job_id: Optional[str] = None
    service: Optional[str] = None
    function: Optional[str] = None
    cluster_id: Optional[str] = None
    machine_id: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged(self, **kwargs: Any) -> "LogContext":
        """Copy with fields overridden; unknown keys land in extra."""
        known = {f.name for f in fields(self)} - {"extra"}
        updates = {k: v for k, v in kwargs.items() if k in known}
        extra = {**self.extra, **{k: v for k, v in kwargs.items() if k not in known}}
        return replace(self, extra=extra, **updates)

    def to_dict(self) -> Dict[str, Any]:
        """Non-empty fields, extras flattened in."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


_EMPTY = LogContext()
_current_context: ContextVar[LogContext] = ContextVar("taskbridge_log_context", default=_EMPTY)


def get_current_context() -> LogContext:
    return _current_context.get()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[LogContext]:
    """
    Push context fields for the duration of the block.

    Nested blocks inherit the outer fields and may override them.

    Example:
        with log_context(service="billing", cluster_id="c-1"):
            with log_context(job_id="job-123"):
                logger.info("Processing job")   # carries all three fields
    """
    context = get_current_context().merged(**kwargs)
    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


class ContextFilter(logging.Filter):
    """Stamps the current LogContext onto every record as record.context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = get_current_context().to_dict()
        return True


# ============================================================================
# FORMATTERS
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    context = getattr(record, "context", None)
    if context is None:
        context = get_current_context().to_dict()
    return context


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Context fields are top-level keys so log queries can filter on job_id
    or service directly.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": _utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_record_context(record))

        data = getattr(record, "data", None)
        if data:
            log_data["data"] = data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["source"] = f"{record.module}:{record.lineno}"
        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line format for development, context shown in brackets."""

    _SHORT = (("service", "service"), ("job_id", "job"), ("function", "fn"))

    def format(self, record: logging.LogRecord) -> str:
        context = _record_context(record)
        parts = [f"{label}={context[key]}" for key, label in self._SHORT if context.get(key)]
        context_str = f" [{', '.join(parts)}]" if parts else ""

        line = (
            f"{_utcnow():%Y-%m-%d %H:%M:%S} {record.levelname:<8} "
            f"{record.name}{context_str}: {record.getMessage()}"
        )

        data = getattr(record, "data", None)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


# ============================================================================
# SETUP
# ============================================================================

class ContextLogger(logging.LoggerAdapter):
    """Adapter that snapshots the context when the call is made."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("context", get_current_context().to_dict())
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


# Third-party loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "aiohttp.access")


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> logging.Handler:
    """
    Install one stdout handler on the root logger.

    Args:
        level: Log level name or number
        json_output: JSON lines instead of the human format; also enabled
            by TASKBRIDGE_LOG_FORMAT=json

    Returns:
        The installed handler
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("TASKBRIDGE_LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handler


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

CHECKPOINT_LOGGER = "taskbridge.checkpoint"


def log_checkpoint(name: str, data: Optional[Dict[str, Any]] = None) -> None:
    """
    Log a named lifecycle marker.

    The polling agent emits one per state change ("agent_registering",
    "agent_polling", "agent_restarting", ...) so an agent's history can be
    reconstructed from the logs of a single service.
    """
    logging.getLogger(CHECKPOINT_LOGGER).info(
        f"CHECKPOINT: {name}",
        extra={"data": {"checkpoint": name, **(data or {})}},
    )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LogContext",
    "ContextFilter",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "CHECKPOINT_LOGGER",
    "NOISY_LOGGERS",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
