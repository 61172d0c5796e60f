"""Logger setup shared by the engine and the persistence backends."""

from __future__ import annotations

import logging

LOGGER_ROOT = "mctracker"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under ``mctracker``."""
    if name == LOGGER_ROOT or name.startswith(f"{LOGGER_ROOT}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


def configure_logging(level: str = "INFO") -> None:
    """Install a basic handler for the ``mctracker`` logger tree.

    Safe to call more than once; only the level changes on repeat calls.
    """
    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
