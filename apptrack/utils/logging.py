"""Logging setup for the apptrack CLI and sweep workers.

Sweeps usually run from cron, often as several processes against the same
database, so every record carries the process id and can optionally be
appended to a log file shared by all workers.
"""

import logging
import sys
from pathlib import Path

LOGGER_NAME = "apptrack"

LOG_FORMAT = "%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_configured = False


def _build_handlers(log_file: Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    return handlers


def configure_logging(
    level: str | None = None,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the ``apptrack`` logger.

    The first call installs a stderr handler (plus a file handler when
    ``log_file`` is given). Later calls only change the level; handlers stay
    as they are until ``reset_logging``.

    Args:
        level: Log level name; defaults to INFO.
        log_file: File that records are appended to, in addition to stderr.

    Returns:
        The application logger.
    """
    global _configured

    logger = logging.getLogger(LOGGER_NAME)
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logger.setLevel(log_level)

    if not _configured:
        logger.handlers.clear()
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        for handler in _build_handlers(log_file):
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        # Keep worker output off the root logger
        logger.propagate = False
        _configured = True

    for handler in logger.handlers:
        handler.setLevel(log_level)

    return logger


def reset_logging() -> None:
    """Close the installed handlers and restore default propagation."""
    global _configured

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True

    _configured = False
