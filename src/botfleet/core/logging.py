"""
botfleet logging - structured logging for the orchestrator.

Manifesto:
    Worker lifecycles fail in the supervisor, not in our code, so the only
    way to debug a stuck bot is the log trail. Every lifecycle step logs an
    event-style key with the worker, tenant and handle bound, so a single
    filter on ``worker_id`` reconstructs what happened.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="botfleet")
            │
            ▼
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars      ← LogContext
          3. add_log_level
          4. add_service_metadata
          5. JSONRenderer (non-tty) or ConsoleRenderer (tty)

Examples:
    >>> from botfleet.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger(__name__)
    >>> with LogContext(worker_id=7, tenant_id="u1"):
    ...     logger.info("worker.started", handle="bot_u1_1700000000000")

Tags:
    logging, structlog, observability, botfleet

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "botfleet"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "botfleet",
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name included in every event
        stream: Where events are written (default stdout)
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not (stream or sys.stdout).isatty()

    shared_processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        # An explicit stream may be swapped by the caller; resolve loggers per call
        cache_logger_on_first_use=stream is None,
    )

    # Supervisor adapters log through the standard library
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``).

    The name is bound as the ``logger_name`` key of every event.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(worker_id=3, tenant_id="u1"):
            logger.info("worker.starting")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


__all__ = [
    "configure_logging",
    "get_logger",
    "LogContext",
]
