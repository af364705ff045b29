"""Logging setup."""

import sys

from loguru import logger


def setup_logging(level: str = "INFO") -> None:
    """Send all log records to a single colourised stderr sink."""
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> [<level>{level}</level>]: <level>{message}</level>",
        level=level.upper(),
        colorize=True,
        backtrace=True,
        diagnose=False,
    )
