"""Logging configuration helpers for the dealflow service."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Chatty libraries that only matter when debugging transport issues.
NOISY_LOGGERS = ("urllib3", "apscheduler.executors", "sqlalchemy.engine")


def _coerce_level(level: str | int) -> int:
    """Translate a user provided level into a numeric log level."""

    if isinstance(level, int):
        return level
    name = level.upper()
    mapping = logging.getLevelNamesMapping()
    if name not in mapping:
        raise ValueError(f"Unknown log level: {level}")
    return mapping[name]


def configure_logging(level: str | int | None = None, *, force: bool = False) -> None:
    """Configure the root logger for console output.

    The level defaults to ``DEALFLOW_LOG_LEVEL`` (INFO when unset or invalid).
    Third-party transport loggers stay at WARNING unless debug output is requested.
    """

    raw_level = level if level is not None else os.getenv("DEALFLOW_LOG_LEVEL", "INFO")
    try:
        resolved_level = _coerce_level(raw_level)
    except ValueError:
        resolved_level = logging.INFO

    noisy_level = resolved_level if resolved_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        root_logger.setLevel(resolved_level)
        return

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, force=force)


__all__ = ["configure_logging"]
