"""
ingestion_service/core/logging.py
structlog configuration shared by the process entry point and the server.

Events are snake_case names with keyword fields, e.g.
``logger.info("storage_connected", component="Storage")``.
"""

import logging
import sys
from typing import List, Optional

import structlog
from structlog.stdlib import BoundLogger
from structlog.typing import Processor

from .config import settings

ROOT_LOGGER = "ingestion"


def _renderers(fmt: str) -> List[Processor]:
    if fmt == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> BoundLogger:
    """
    Route structlog through stdlib logging on stdout.

    ``level`` and ``fmt`` default to LOG_LEVEL and LOG_FORMAT. uvicorn's own
    loggers propagate to the same root handler, so server and service
    records share one stream.
    """
    level = (level or settings.LOG_LEVEL).upper()
    fmt = fmt or settings.LOG_FORMAT

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            *_renderers(fmt),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger(ROOT_LOGGER)
    logger.info("logging_configured", level=level, format=fmt, node_env=settings.NODE_ENV)
    return logger


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """``ingestion.<name>``, or the root service logger when name is empty."""
    return structlog.get_logger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


class LogContext:
    """
    Binds per-request fields (method, path, client) for the duration of a
    ``with`` block. Fields are cleared on exit, even if the block raises.
    """

    def __init__(self, **fields):
        self.fields = fields

    def __enter__(self):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.clear_contextvars()
        return False


__all__ = ["setup_logging", "get_logger", "LogContext"]
