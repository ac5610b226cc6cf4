"""
Logging Setup
=============
TopicGraph logs through loguru. Library code only ever does
``from loguru import logger``; the process entry point decides where the
records go by calling one of:

    configure_logging(level="DEBUG", json_format=False)
    configure_from_config(get_config())     # uses the observability section

umap-learn, numba and pynndescent log through the stdlib ``logging`` module;
those records are routed into loguru as well, with the three libraries held
at WARNING or quieter.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from loguru import logger

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

_NOISY_LIBRARIES = ("numba", "umap", "pynndescent")

_configured = False


class InterceptHandler(logging.Handler):
    """Re-emit stdlib records through loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    *,
    sink: Optional[str] = None,
) -> None:
    """
    Replace loguru's handlers with a single TopicGraph handler.

    Args:
        level: Minimum level; falls back to $LOG_LEVEL, then INFO.
        json_format: Serialized JSON records; falls back to $LOG_FORMAT == "json".
        sink: File path to write to. Defaults to stderr (colorized).
    """
    global _configured

    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_format is None:
        json_format = os.environ.get("LOG_FORMAT", "").lower() == "json"

    options = {
        "level": level,
        "enqueue": True,
        "backtrace": True,
    }
    if json_format:
        options.update(serialize=True, diagnose=False)
    else:
        options.update(format=_TEXT_FORMAT, colorize=sink is None, diagnose=True)

    logger.remove()
    logger.add(sink or sys.stderr, **options)
    _route_stdlib_logging(level)

    _configured = True
    logger.debug(f"Logging ready (level={level}, json={json_format}, sink={sink or 'stderr'})")


def configure_from_config(config=None) -> None:
    """Apply the observability section of a TopicGraphConfig (or the global one)."""
    if config is None:
        from .config import get_config

        config = get_config()
    configure_logging(
        level=config.observability.log_level,
        json_format=config.observability.json_logs,
    )


def _route_stdlib_logging(level: str) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # loguru knows TRACE and SUCCESS, which the stdlib has no number for
    floor = max(logging.WARNING, logger.level(level).no)
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(floor)


def is_configured() -> bool:
    return _configured


__all__ = ["configure_logging", "configure_from_config", "is_configured", "logger"]
