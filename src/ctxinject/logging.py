"""Logging configuration using structlog.

ctxinject is embedded in host processes that usually own stdout (prompt
output, IPC), so records are written to stderr through a handler on the
``ctxinject`` logger only; the root logger is left to the host.
"""

import logging
import sys
from typing import Any

import structlog

from ctxinject.config import settings

PACKAGE_LOGGER = "ctxinject"

_handler: logging.Handler | None = None


def _renderer(log_format: str) -> list[Any]:
    if log_format == "console":
        return [structlog.dev.ConsoleRenderer()]
    return [
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]


def configure_logging(
    log_level: str | None = None,
    log_format: str | None = None,
) -> None:
    """Configure structlog output for the ctxinject package.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
            (default: CTXINJECT_LOG__LEVEL)
        log_format: "json" for JSON lines, "console" for human-readable
            output (default: CTXINJECT_LOG__FORMAT)

    Calling it again replaces the previously installed handler.
    """
    global _handler

    level_name = (log_level or settings.log.level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if _handler is not None:
        package_logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(_handler)
    package_logger.setLevel(numeric_level)
    package_logger.propagate = False

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_renderer(log_format or settings.log.format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
