"""
Structured logging setup for the PoEP pipeline.

Modules only call ``structlog.get_logger(__name__)``; the host application
calls :func:`configure_logging` once at startup to choose the renderer and
level.
"""

import logging
import sys
from typing import Optional

import structlog

from . import config

_configured = False


def configure_logging(
    level: Optional[str] = None, structured: Optional[bool] = None
) -> None:
    """
    Configure structlog and the standard library root logger.

    Parameters
    ----------
    level : str, optional
        Log level name; defaults to ``config.LOG_LEVEL``.
    structured : bool, optional
        Emit JSON lines when True, human-readable console output otherwise;
        defaults to ``config.STRUCTURED_LOGGING``.
    """
    global _configured

    level_name = (level or config.LOG_LEVEL).upper()
    use_json = config.STRUCTURED_LOGGING if structured is None else structured
    numeric_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def is_configured() -> bool:
    """Return True once :func:`configure_logging` has run."""
    return _configured
