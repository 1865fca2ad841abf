"""Structured logging for hugobox.

Logs go to stderr; stdout carries the attached container's output.

The logger works from import time at the level named by ``LOG_LEVEL``, so
that configuration errors can be logged before Settings exist.
:func:`configure_logging` applies the ``[logging]`` section once they load.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from hugobox.config import LoggingConfig


def _resolve_level(config: LoggingConfig | None) -> int:
    """``[logging] level`` (or ``LOGGING__LEVEL``) wins over ``LOG_LEVEL``."""
    name = config.level if config is not None and config.level else None
    name = (name or os.environ.get("LOG_LEVEL") or "INFO").upper()
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def _processors(colors: bool) -> list[Any]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer(colors=colors),
    ]


def configure_logging(config: LoggingConfig | None = None) -> int:
    """Set the root level and structlog pipeline. Returns the level applied.

    Safe to call again once Settings are loaded; loggers already handed out
    pick up the new level because filtering goes through the stdlib root.
    """
    level = _resolve_level(config)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(message)s", stream=sys.stderr)
    root.setLevel(level)

    structlog.configure(
        processors=_processors(colors=sys.stderr.isatty()),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return level


configure_logging()
logger: structlog.stdlib.BoundLogger = structlog.get_logger()


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
