"""
Logging configuration.

All cairn modules log under the "cairn" logger tree (cairn.memory.store,
cairn.memory.compaction, ...). Pass summaries go out at INFO, per-record
CRUD at DEBUG.
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# aiosqlite logs every statement at DEBUG
NOISY_LOGGERS = ("aiosqlite",)


def setup_logging(
    level: int = logging.INFO,
    log_file: Path | None = None,
    console_level: int | None = None,
) -> logging.Logger:
    """Configure the cairn logger with console and optional file output.

    Safe to call more than once: previously installed handlers are replaced.
    ``console_level`` defaults to ``level``; one-shot CLI commands raise it so
    that stdout/stderr stay readable while the log file keeps everything.
    """
    logger = logging.getLogger("cairn")
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # stderr keeps stdout free for command output
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level if console_level is not None else level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger, e.g. get_logger("memory.store") -> "cairn.memory.store"."""
    return logging.getLogger(f"cairn.{name}")
