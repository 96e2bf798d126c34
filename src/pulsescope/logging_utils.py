"""Tagged logging helper for the pulsescope library.

Each component logs under its own child of the ``pulsescope`` logger
(``pulsescope.tempo``, ``pulsescope.buildup``...) and stamps records with
a short tag plus optional ``key=value`` fields. Only a ``NullHandler`` is
installed by default; call ``enable_console_logging()`` to get
``[LEVEL][Tag] message`` output.
"""

from __future__ import annotations

import logging
from typing import Any

ROOT_LOGGER = "pulsescope"
CONSOLE_FORMAT = "[%(levelname)s][%(tag)s] %(message)s"

_logger = logging.getLogger(ROOT_LOGGER)
_logger.addHandler(logging.NullHandler())


def _level_value(level: str | None) -> int:
    return getattr(logging, (level or "INFO").upper(), logging.INFO)


def component_logger(tag: str) -> logging.Logger:
    """Child logger for one component, e.g. ``Tempo`` -> ``pulsescope.tempo``."""
    return _logger.getChild(tag.lower())


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under the component ``tag``, appending ``key=value`` fields."""
    logger = component_logger(tag)
    level_val = _level_value(level)
    if not logger.isEnabledFor(level_val):
        return
    if fields:
        message = f"{message} | " + " ".join(f"{key}={value}" for key, value in fields.items())
    logger.log(level_val, message, extra={"tag": tag})


def enable_console_logging(level: str = "INFO") -> logging.Handler:
    """Attach a console handler using the tagged formatter."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    _logger.addHandler(handler)
    set_log_level(level)
    return handler


def set_log_level(level: str) -> None:
    """Set the library-wide level (DEBUG/INFO/WARNING/ERROR)."""
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    return logging.getLevelName(_logger.getEffectiveLevel())
