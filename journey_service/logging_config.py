"""Structured logging setup."""
import logging
import sys
from typing import Optional

import structlog

from journey_service.config import config


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structlog for the service.

    Call once at startup. Loggers obtained through get_logger() before this
    call still work with structlog's defaults.
    """
    level_name = (level or config.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    renderer_name = (log_format or config.log_format).lower()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if renderer_name == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    """Get a structured logger bound to a module name."""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
