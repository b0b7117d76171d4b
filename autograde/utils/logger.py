"""
Centralized logging setup for the autograde pipeline.

Provides a ``get_logger`` factory that returns module-specific loggers
all writing to the console and, once :func:`setup_logging` has been
called with a log directory, to a shared rotating log file.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
_LOG_FILE_NAME = "autograde.log"
_MAX_BYTES = 10 * 1024 * 1024  # 10 MB per log file
_BACKUP_COUNT = 5
_FMT = "%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"
_ROOT_NAME = "autograde"

# ---------------------------------------------------------------------------
# Shared formatter & handlers (created once)
# ---------------------------------------------------------------------------
_formatter = logging.Formatter(_FMT, datefmt=_DATE_FMT)

_console_handler = logging.StreamHandler(sys.stdout)
_console_handler.setFormatter(_formatter)
_console_handler.setLevel(logging.INFO)

_file_handler: Optional[RotatingFileHandler] = None


def setup_logging(level: str = "INFO", log_dir: Optional[Union[str, Path]] = None) -> None:
    """
    Configure the package logger.

    Args:
        level: Console log level name (``DEBUG``, ``INFO`` ...).
        log_dir: Directory for the rotating log file. No file is written
            when omitted.
    """
    global _file_handler

    _console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    root = _package_logger()

    if log_dir is not None and _file_handler is None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        _file_handler = RotatingFileHandler(
            str(path / _LOG_FILE_NAME),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        _file_handler.setFormatter(_formatter)
        _file_handler.setLevel(logging.DEBUG)  # file always captures everything
        root.addHandler(_file_handler)


def _package_logger() -> logging.Logger:
    root = logging.getLogger(_ROOT_NAME)
    if _console_handler not in root.handlers:
        root.setLevel(logging.DEBUG)
        root.addHandler(_console_handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger identified by *name*.

    Loggers under the ``autograde`` namespace share the package handlers
    through propagation, so output is consistent across the library.

    Args:
        name: Typically ``__name__`` of the calling module.

    Returns:
        A configured :class:`logging.Logger`.
    """
    _package_logger()
    return logging.getLogger(name)
