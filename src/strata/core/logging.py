"""
Logging configuration.

Console and file traces for ingestion, retrieval and consolidation.
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure the ``strata`` logger.

    Calling it again replaces the previous handlers, so the CLI can be
    invoked repeatedly in one process.
    """
    logger = logging.getLogger("strata")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # stdout is reserved for command output
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # aiosqlite traces every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(max(level, logging.INFO))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child of the package logger, e.g. ``get_logger("memory.engine")``."""
    return logging.getLogger(f"strata.{name}")
