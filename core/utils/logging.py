"""Centralized logging configuration."""

import logging
import sys
from typing import Optional

# Third-party loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ("apscheduler", "botocore", "boto3", "urllib3", "kubernetes")


def setup_logging(
    level: str = "INFO", format_style: str = "standard", log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure logging for the controller.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format_style: 'standard' for dev, 'json' for production
        log_file: Optional file path to write logs

    Returns:
        Root logger
    """
    if format_style == "json":
        # Production - structured logging
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "thread": "%(threadName)s", "message": "%(message)s"}'
    else:
        # Development - human readable
        fmt = "%(asctime)s | %(levelname)-8s | %(threadName)-12s | %(name)s | %(message)s"

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(
        level=numeric_level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,  # Override any existing config
    )

    # Keep library noise down unless we're debugging
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Usage:
        from core.utils.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Something happened")
    """
    return logging.getLogger(name)
