"""Structured logging for the loader.

Wraps structlog so every component logs dotted snake_case events with
key-value context.  Per-message context (message id, destination table,
submission attempt) is carried in a ``ContextVar`` and merged into each
entry while a ``with_context()`` block is active, which keeps concurrent
asyncio workers from bleeding context into each other.

Example usage:
    from bqloader.core.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", format="console")
    logger = get_logger("throttle.gate")
    logger.info("gate.checked", running=3, threshold=5)

    ctx = RequestContext(message_id="abc", destination="ds.table")
    with with_context(ctx):
        logger.info("router.received")  # includes message_id, destination
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Keys whose values must never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "credential",
    "credentials",
    "token",
    "secret",
    "password",
    "private_key",
    "service_account",
    "authorization",
})


@dataclass(frozen=True)
class RequestContext:
    """Correlation fields for one inbound load request.

    Attributes:
        message_id: Transport-level id of the inbound message (``uniqueMessageId``
            when the producer set one).
        destination: ``dataset.table`` the request loads into.
        attempt: Retry cycles already consumed when the request arrived.
        component: Component currently handling the request.
    """

    message_id: str
    destination: str | None = None
    attempt: int | None = None
    component: str = "router"

    def with_destination(self, destination: str, attempt: int) -> RequestContext:
        """Return a copy once the payload has been decoded."""
        return replace(self, destination=destination, attempt=attempt)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "message_id": self.message_id,
            "component": self.component,
        }
        if self.destination is not None:
            result["destination"] = self.destination
        if self.attempt is not None:
            result["attempt"] = self.attempt
        return result


_current_context: ContextVar[RequestContext | None] = ContextVar(
    "bqloader_context", default=None
)


def get_current_context() -> RequestContext | None:
    """Return the active RequestContext, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: RequestContext) -> Iterator[RequestContext]:
    """Make ``ctx`` the active RequestContext for the duration of the block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor redacting values stored under sensitive keys."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor merging the active RequestContext.

    Explicitly passed keys win over context keys.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class LoaderLogger:
    """Component-bound wrapper around a structlog logger.

    The underlying structlog logger is fetched on every call so that
    loggers created at import time still honour a later
    ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> LoaderLogger:
        """Return a new logger with additional bound context."""
        new_logger = LoaderLogger.__new__(LoaderLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._get_logger().exception(event, **kw)

    def task_failure(
        self,
        task: asyncio.Task[Any],
        event: str,
        *,
        level: Literal["debug", "info", "warning", "error"] = "error",
    ) -> BaseException | None:
        """Done-callback body: log the exception a finished task ended with.

        Retrieving the exception here keeps tasks nobody awaits any more
        (a shared refresh whose waiters were all cancelled, a dead worker)
        from being reported as "never retrieved".

        Returns:
            The exception, or ``None`` if the task succeeded or was cancelled.
        """
        if task.cancelled():
            return None
        exc = task.exception()
        if exc is not None:
            getattr(self, level)(
                event,
                error=str(exc),
                error_type=type(exc).__name__,
                task_name=task.get_name(),
            )
        return exc


def _build_processors(renderer: Processor, include_timestamps: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_context,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
) -> None:
    """Configure structured logging for the process.

    Call once at startup.  ``format="both"`` writes human-readable output
    to stderr and JSON lines to ``file_path``.

    Raises:
        ValueError: If ``format="both"`` is requested without ``file_path``.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            ))
        else:
            handlers.append(logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=_build_processors(renderer, include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> LoaderLogger:
    """Get a logger bound to ``component`` (e.g. ``"throttle.snapshot"``)."""
    return LoaderLogger(component, **initial_context)


__all__ = [
    "LoaderLogger",
    "RequestContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
