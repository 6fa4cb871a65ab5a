"""Logging utilities for pkgdocs commands and workers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TextIO

_LOGGER_NAME = "pkgdocs"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the pkgdocs hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Path | None = None,
    stream: TextIO | None = None,
    timestamps: bool = False,
) -> logging.Logger:
    """Configure the pkgdocs logger with console output and optional file sink.

    Workers pass ``stream=sys.stdout`` and ``timestamps=True`` so their log
    lines land, timestamped, in the same captured job log as the build output.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers to avoid duplicate output when invoked multiple times.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(level)
    console_format = "[pkgdocs] %(levelname)s %(message)s"
    if timestamps:
        console_format = "%(asctime)s " + console_format
    stream_handler.setFormatter(logging.Formatter(console_format))
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging", "get_logger"]
