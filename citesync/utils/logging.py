"""Logging configuration for citesync."""
import logging
import sys
from typing import Iterable, Optional

PACKAGE_LOGGER = "citesync"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """Configure the citesync package logger.

    Safe to call more than once: handlers are only attached the first time,
    later calls just adjust the level.

    Args:
        level: Logging level (e.g., logging.INFO, logging.DEBUG)
        format_string: Custom format string for log messages
        log_file: Optional file path to write logs to

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    if getattr(logger, "_citesync_configured", False):
        return logger

    formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    logger._citesync_configured = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_skipped(logger: logging.Logger, skipped: Iterable, document_id: str = "") -> int:
    """Write one summary line per skipped operation.

    Args:
        logger: Logger to write to
        skipped: Items exposing ``subject_key``, ``reason`` and ``detail``
        document_id: Document the skips belong to (for the log prefix)

    Returns:
        Number of skipped items logged
    """
    count = 0
    for item in skipped:
        count += 1
        logger.info(
            f"[{document_id or 'export'}] skipped {item.subject_key}: "
            f"{item.reason.value} {item.detail}".rstrip()
        )
    return count
