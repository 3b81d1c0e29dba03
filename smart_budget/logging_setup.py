"""Centralized structlog configuration for the ``smart_budget`` package.

Library modules only call ``structlog.get_logger()`` and log key/value
events.  Entrypoints (the CLI script and the Streamlit page) call
``configure_logging`` once at startup to choose the level and renderer.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from .config import LOG_LEVEL

_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if level is None:
        level = LOG_LEVEL
    level = str(level).strip().upper()
    if level.isdigit():
        return int(level)
    numeric = logging.getLevelName(level)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    stream: IO[str] = sys.stderr,
    force: bool = False,
) -> None:
    """Configure structlog exactly once.

    Parameters
    ----------
    level:
        Logging level as ``int`` or level-name string (e.g. ``"DEBUG"``).  If
        ``None``, ``SMART_BUDGET_LOG_LEVEL`` is used, falling back to INFO.
    stream:
        Where rendered events are written (defaults to ``sys.stderr``).
    force:
        Reconfigure even if a previous call already ran.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_parse_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )
    _CONFIGURED = True
