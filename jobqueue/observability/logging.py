"""
Structured logging for the queue processes.

Module code logs through stdlib loggers (``logging.getLogger(__name__)``)
and passes job fields via ``extra``; structlog renders those records as JSON
lines or coloured console output, with the worker id, process component and
any active trace ids merged in.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from opentelemetry import trace

from jobqueue.config import get_settings

# Libraries that log every statement or request at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiosqlite", "asyncio")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current span's trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_logging(
    component: str,
    log_level: str | None = None,
    log_format: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Route all stdlib logging through structlog.

    Args:
        component: Process role ("worker", "cleanup", ...) stamped on every
            record emitted from the calling task and the tasks it spawns.
        log_level: Overrides LOG_LEVEL.
        log_format: "json" or "console"; overrides LOG_FORMAT.
        stream: Destination, stdout by default.
    """
    settings = get_settings()
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    if (log_format or settings.log_format) == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.contextvars.clear_contextvars()
    bind_context(component=component)


def bind_context(**kwargs: Any) -> None:
    """
    Add fields to every record logged from the current task.

    Tasks created afterwards inherit the fields; WorkerPool uses this to tag
    each worker loop with its worker_id.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
