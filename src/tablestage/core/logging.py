"""Structured logging infrastructure.

Works for local development (console output) and deployments that ship
JSON logs.

Usage:
    from tablestage.core.logging import get_logger, configure_logging

    # Configure at startup
    configure_logging(log_level="INFO", log_format="console")

    # Get logger in any module
    logger = get_logger(__name__)

    # Log with structured context
    logger.info("page_loaded", table="customers", rows=200)

    # Bind context for everything logged within a scope
    with log_context(session_id="s-1", table="customers"):
        logger.info("transaction_committed", statements=3)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from contextvars import ContextVar
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

from tablestage.core.config import Settings, get_settings

# Context variables for correlation
_view_context: ContextVar[dict[str, Any] | None] = ContextVar("view_context", default=None)


def _add_view_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add the bound table-view context to log events."""
    context = _view_context.get()
    if context:
        for key, value in context.items():
            event_dict.setdefault(key, value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format ("console" for development, "json" for production)
        show_timestamps: Whether to show timestamps in console mode
        color: Whether to use colors in console mode
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_view_context,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if show_timestamps:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=color,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure stdlib logging for libraries (SQLAlchemy, drivers)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))


class LogContext:
    """Context manager for adding context to logs within a scope."""

    def __init__(self, **context: Any):
        """Initialize with context key-value pairs."""
        self.context = context
        self.token: Any = None

    def __enter__(self) -> LogContext:
        """Enter context, adding values to log context."""
        current = _view_context.get() or {}
        new_context = {**current, **self.context}
        self.token = _view_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context, restoring previous values."""
        if self.token:
            _view_context.reset(self.token)


def log_context(**context: Any) -> LogContext:
    """Create a context manager for scoped logging context.

    Usage:
        with log_context(session_id="abc", table="users"):
            logger.info("saving")  # Will include session_id and table
    """
    return LogContext(**context)


def configure_from_settings(settings: Settings | None = None) -> None:
    """Configure logging from TABLESTAGE_LOG_LEVEL and TABLESTAGE_LOG_FORMAT."""
    settings = settings or get_settings()
    configure_logging(log_level=settings.log_level, log_format=settings.log_format)


# Initialize from environment settings
configure_from_settings()
