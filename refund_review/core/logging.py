"""Logging configuration and utilities."""

import logging
import sys
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.processors import JSONRenderer, TimeStamper, add_log_level

from refund_review.core.config import Settings
from refund_review.domain.models.reviewer import Reviewer


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    log_level = settings.app.log_level.value

    processors: list[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.observability.log_record_format == "json":
        processors.append(JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(log_level)),
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)


def bind_reviewer(reviewer: Reviewer) -> None:
    """Attach the calling reviewer to every structured log line of this request."""
    clear_contextvars()
    bind_contextvars(reviewer_id=reviewer.id, role=reviewer.role.value)
