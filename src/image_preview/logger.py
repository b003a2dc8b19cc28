"""Logging helper for console output (and optional GUI hook)."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER_NAME = "image_preview"


class _SeqFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "seq"):
            record.seq = "-"
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for console output.

    Parameters
    ----------
    name : str
        Module name, typically ``__name__``.
    """
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        base.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(module)s seq=%(seq)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        handler.addFilter(_SeqFilter())
        base.addHandler(handler)
        base.propagate = False
    if name.startswith(f"{_LOGGER_NAME}."):
        name = name[len(_LOGGER_NAME) + 1 :]
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def set_level(level) -> None:
    """Update log level for the base logger and all of its handlers."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    base = logging.getLogger(_LOGGER_NAME)
    base.setLevel(level)
    for handler in base.handlers:
        handler.setLevel(level)


def attach_gui_handler(handler: Optional[logging.Handler]) -> None:
    """Optionally attach a GUI handler (e.g., a dock log view)."""
    if handler is None:
        return
    handler.addFilter(_SeqFilter())
    base = logging.getLogger(_LOGGER_NAME)
    if handler not in base.handlers:
        base.addHandler(handler)
