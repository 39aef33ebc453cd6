"""Structured logging with structlog.

All modules log through ``get_logger(__name__)`` with snake_case event names
and key-value context, e.g.::

    logger = get_logger(__name__)
    logger.info("chain_completed", input="schema_file", rebuilt=["gql_schema"])
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.contextvars import merge_contextvars


def setup_logging(level: str = "INFO", format: str = "console") -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "console" for human-readable output, "json" for machine-readable output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
        force=True,
    )

    shared_processors = [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        output_processors = [
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ]
    else:
        output_processors = [
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=shared_processors + output_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> Any:
    """Get a structured logger instance (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def log_failure(logger: Any, event: str, error: BaseException, **extra: Any) -> None:
    """Log a failure with consistent structure.

    Adds ``error_type`` and ``error_message``, plus ``code``, ``step`` and
    ``input_path`` when the error carries them.
    """
    data = dict(extra)
    data["error_type"] = type(error).__name__
    data["error_message"] = getattr(error, "message", str(error))
    for attr in ("code", "step", "input_path"):
        value = getattr(error, attr, None)
        if value is not None and attr not in data:
            data[attr] = getattr(value, "value", value)
    logger.error(event, **data)
