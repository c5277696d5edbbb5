"""Logging helpers for taxirl.

All modules log through ``get_logger(__name__)`` so that a single handler on
the ``taxirl`` logger controls the output of the whole package.
"""

from __future__ import annotations

import logging
import sys
from typing import Dict, Optional, Union

_DEFAULT_LEVEL = logging.WARNING
_ROOT_NAME = "taxirl"

_loggers: Dict[str, logging.Logger] = {}


def _configure_root() -> logging.Logger:
    root = logging.getLogger(_ROOT_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(handler)
        root.setLevel(_DEFAULT_LEVEL)
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get or create a logger below the ``taxirl`` namespace.

    Args:
        name: Logger name, typically ``__name__``. If None, returns the
            package logger.

    Returns:
        A logger whose records propagate to the package handler.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Planning finished")
    """
    if name is None:
        name = _ROOT_NAME
    logger_name = name if name.startswith(_ROOT_NAME) else f"{_ROOT_NAME}.{name}"

    if logger_name in _loggers:
        return _loggers[logger_name]

    _configure_root()
    logger = logging.getLogger(logger_name)
    _loggers[logger_name] = logger
    return logger


def set_log_level(level: Union[int, str]) -> None:
    """Set the level of the package logger (e.g. ``"INFO"`` or ``logging.DEBUG``)."""
    if isinstance(level, str):
        level = level.upper()
    _configure_root().setLevel(level)
