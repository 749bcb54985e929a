"""Structured logging for the storage core.

Every module logs through ``get_logger(__name__)`` with a short event
message plus key/value context. ``configure_logging`` routes structlog
through the stdlib ``logging`` module so that SQLAlchemy and driver
records end up in the same handlers.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from catalog_storage.core.config import Settings

# Libraries that log every statement or pool checkout at INFO/DEBUG
NOISY_LOGGERS = (
    "aiosqlite",
    "asyncpg",
    "aiomysql",
    "sqlalchemy.engine",
    "sqlalchemy.dialects",
    "sqlalchemy.pool",
)


def _handlers(settings: Settings, level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _processors(log_format: str) -> list:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if log_format == "json":
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.insert(0, structlog.processors.TimeStamper(fmt="%H:%M:%S"))
        processors.append(structlog.dev.ConsoleRenderer(
            colors=False,
            pad_event=35,
            exception_formatter=structlog.dev.plain_traceback
        ))
    return processors


def configure_logging(settings: Settings) -> None:
    """Configure stdlib handlers and structlog from settings."""
    level = getattr(logging, settings.log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=_handlers(settings, level),
    )
    if not settings.database_echo:
        quiet = max(level, logging.WARNING)
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(quiet)

    structlog.configure(
        processors=_processors(settings.log_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_execution_time(logger: structlog.stdlib.BoundLogger, operation: str,
                       start_time: float, end_time: float, **kwargs) -> None:
    """Debug-level timing of one operation, in milliseconds."""
    logger.debug(
        "Operation timed",
        operation=operation,
        execution_time_ms=round((end_time - start_time) * 1000, 2),
        **kwargs
    )


def log_cache_operation(logger: structlog.stdlib.BoundLogger, operation: str,
                        key: object, hit: Optional[bool] = None, **kwargs) -> None:
    """Debug-level trace of one cache access."""
    if hit is not None:
        kwargs["cache_hit"] = hit
    logger.debug("Cache operation", operation=operation, cache_key=repr(key), **kwargs)
