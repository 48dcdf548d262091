"""
Structured logging configuration for safe-code-runner.

The library only emits events through structlog; applications (and the
`scr` CLI) call `configure_logging` once at startup.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", *, json: bool = False) -> None:
    """Route structlog through stdlib logging to stderr.

    Example:
        ```python
        configure_logging("DEBUG", json=True)
        ```
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )

    renderer: Any = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **context: Any) -> Any:
    """Return a structlog logger with bound context.

    Example:
        ```python
        log = get_logger(__name__, run_id="4f1c", language="python")
        log.info("run_finished", exit_code=0)
        ```
    """
    logger = structlog.get_logger(name)
    if context:
        return logger.bind(**context)
    return logger
