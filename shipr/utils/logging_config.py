"""
Logging configuration using structlog for structured, JSON-based logging.

Structured logs go to stderr so they never interleave with the prefixed task
output written to the run's stdout sink.
"""

import sys
from typing import Any

import structlog


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure structured logging with JSON output.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("task_started", task="deploy")
    """
    return structlog.get_logger(name)
