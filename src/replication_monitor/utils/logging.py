"""Logging helpers built on top of Rich."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

Logger = logging.Logger

_LOGGER_NAME = "replmon"


def _configure_root_logger(level: int = logging.INFO) -> logging.Logger:
    """Configure the process-wide logger once."""

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_time=True,
                show_level=True,
                show_path=False,
            )
        ],
    )
    return logging.getLogger(_LOGGER_NAME)


_logger: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Return the application logger, configuring it on first use."""

    global _logger
    if _logger is None:
        _logger = _configure_root_logger()
    return _logger


def get_child_logger(component: str) -> logging.Logger:
    """Return a component logger that shares the application handlers."""

    return get_logger().getChild(component)


__all__ = ["get_logger", "get_child_logger", "Logger"]
