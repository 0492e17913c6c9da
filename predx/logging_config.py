"""Shared logging configuration for predx.

Call ``configure_logging()`` once at any CLI entry point to ensure logs are emitted.
The function is idempotent: if the root logger already has handlers, it does nothing.
"""

import logging
import os
from typing import Optional, Union

LOG_LEVEL_ENV = "PREDX_LOG_LEVEL"
LOG_FILE_ENV = "PREDX_LOG_FILE"


def resolve_level(level: Optional[Union[int, str]] = None) -> int:
    """Level from the argument, else $PREDX_LOG_LEVEL, else WARNING."""
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "WARNING")
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.WARNING)


def configure_logging(
    level: Optional[Union[int, str]] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure root logger with console + optional file handler.

    Only configures if the root logger has no handlers (idempotent). The
    file handler is added when ``log_file`` or $PREDX_LOG_FILE is set.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(fmt)

    # Console handler
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    log_file = log_file or os.environ.get(LOG_FILE_ENV)
    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            fh = logging.FileHandler(log_file, mode="a")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError as e:
            root.warning(f"Cannot open log file {log_file}: {e}")

    root.setLevel(resolve_level(level))
