"""Logging for the ``finance_core`` package.

Modules ask for their logger through ``get_logger`` and never attach
handlers. Until the HTTP app calls ``configure_logging`` the package logger
only has a ``NullHandler``, so embedding the core stays silent.
"""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "finance_core"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_handler = logging.StreamHandler()
_handler.setFormatter(logging.Formatter(LOG_FORMAT))

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def resolve_level(level: str | None) -> int:
    """Map a level name such as ``"debug"`` to its number; unknown names give INFO."""
    if not level:
        return logging.INFO
    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str | None = None) -> logging.Logger:
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(resolve_level(level))
    if _handler not in logger.handlers:
        logger.addHandler(_handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
