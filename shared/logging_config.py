"""
Structured Logging Configuration

Configures structlog for the PPA core. JSON output in deployed environments,
human readable console output for local development.
"""

import logging
import sys

import structlog

from shared.config import Settings, settings

_configured = False


def configure_logging(config: Settings | None = None, force: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; later calls are ignored unless ``force`` is set.

    Args:
        config: Settings to read log level and format from (defaults to global settings)
        force: Reconfigure even if logging was already configured
    """
    global _configured
    if _configured and not force:
        return

    config = config or settings
    level = getattr(logging, config.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if config.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True

    structlog.get_logger(__name__).debug(
        "Logging configured",
        service=config.service_name,
        level=config.log_level,
        format=config.log_format,
    )
