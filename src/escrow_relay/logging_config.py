"""structlog setup for the relay.

Relay code and third-party libraries both end up on the standard library
root logger, rendered by one ``ProcessorFormatter``: JSON lines outside
development, a colored console locally. Entries carry the ``request_id``
bound by ``RequestIDMiddleware`` and a fixed ``service`` field.

Event names are dotted, subsystem first::

    logger = get_logger(__name__)
    logger.info("escrow.prepared", operation="fund", escrow=address)
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import EventDict, Processor

SERVICE_NAME = "escrow-relay"

# Chatty at INFO; only their warnings are kept.
QUIET_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "solana",
    "aiosqlite",
)


def _tag_service(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _tag_service,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _root_handler(renderer: Processor) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Route structlog through the root logger and install the renderer.

    Args:
        log_level: Root level name, e.g. "INFO". Unknown names fall back to DEBUG.
        json_logs: Render JSON lines instead of the console format.
    """
    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    root = logging.getLogger()
    root.handlers[:] = [_root_handler(renderer)]
    root.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
