"""
logging_config.py — Centralized Logging Configuration for Engage

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so every service's logging.getLogger("engage.x") call
routes through Loguru with structured output.

Business Rules:
- All logs go through Loguru (no direct print() or stdlib handlers)
- JSON lines when LOG_JSON is set, for machine parsing
- Human-readable colored format otherwise
- Optional file sink (LOG_FILE): 50MB rotation, 7-day retention

Called by: scripts/maintenance.py, engage.scheduler (on startup)
Depends on: environment (LOG_LEVEL, LOG_JSON, LOG_FILE)
"""

import logging
import os
import sys

from loguru import logger


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at process startup, before anything logs.
    """
    # Remove Loguru's default stderr handler so we control format
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    json_output = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")
    log_file = os.getenv("LOG_FILE", "")

    if json_output:
        logger.add(
            sys.stdout,
            level=log_level,
            format="{message}",
            serialize=True,
        )
    else:
        logger.add(
            sys.stdout,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            colorize=True,
        )

    if log_file:
        logger.add(
            log_file,
            level=log_level,
            rotation="50 MB",
            retention="7 days",
            compression="gz",
            serialize=json_output,
        )

    # Intercept stdlib logging → route through Loguru
    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    # Quiet noisy third-party loggers
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "alembic.runtime"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured", level=log_level, json=json_output)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller (skip frames from stdlib logging internals)
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )
