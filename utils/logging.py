# utils/logging.py

"""Logging helpers for pagewright."""

from __future__ import annotations

import logging
import logging.handlers
import os

import structlog
from rich.logging import RichHandler

from config import settings

logger = structlog.get_logger(__name__)

__all__ = ["setup_logging"]

_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def setup_logging(level: str | None = None) -> None:
    """Configure structlog and standard logging for the process."""
    log_level = (level or settings.LOG_LEVEL_STR).upper()
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    if settings.LOG_FILE:
        file_path = (
            settings.LOG_FILE
            if os.path.isabs(settings.LOG_FILE)
            else os.path.join(settings.BASE_OUTPUT_DIR, settings.LOG_FILE)
        )
        try:
            log_dir = os.path.dirname(file_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                file_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                mode="a",
                encoding="utf-8",
            )
        except OSError as e:
            logger.error("Error setting up file logger", path=file_path, error=str(e))
        else:
            file_handler.setFormatter(
                logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)
            )
            root_logger.addHandler(file_handler)

    if settings.ENABLE_RICH_PROGRESS:
        root_logger.addHandler(
            RichHandler(
                level=log_level,
                rich_tracebacks=True,
                show_path=False,
                markup=True,
                show_time=True,
                show_level=True,
            )
        )
    else:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(
            logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)
        )
        root_logger.addHandler(stream_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger().info("Logging setup complete.", log_level=log_level)
