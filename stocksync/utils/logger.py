"""Logging configuration for the application."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import get_config


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Setup a logger with console and optional file handlers.

    Args:
        name: Logger name
        log_file: Optional log file path
        level: Optional log level (overrides config)

    Returns:
        Configured logger instance
    """
    config = get_config()

    logger = logging.getLogger(name)
    log_level = level or config.logging.level
    logger.setLevel(getattr(logging, log_level.upper()))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(config.logging.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # No file logs in production; stdout is collected by the platform.
    if log_file and not config.is_production:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_mutation_logger() -> logging.Logger:
    """Get logger for stock mutations."""
    config = get_config()
    return setup_logger("stocksync.mutation", config.logging.files.mutation)


def get_scan_logger() -> logging.Logger:
    """Get logger for barcode resolution."""
    config = get_config()
    return setup_logger("stocksync.scan", config.logging.files.scan)


def get_realtime_logger() -> logging.Logger:
    """Get logger for change feed subscriptions and projections."""
    config = get_config()
    return setup_logger("stocksync.realtime", config.logging.files.realtime)


def get_error_logger() -> logging.Logger:
    """Get logger for error tracking."""
    config = get_config()
    return setup_logger("stocksync.error", config.logging.files.error, "ERROR")


def get_api_logger() -> logging.Logger:
    """Get logger for HTTP traffic."""
    return setup_logger("stocksync.api")
