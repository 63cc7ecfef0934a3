"""Structured logging configuration using structlog.

JSON-structured logs in production, colored console output in development.
Escrow events are logged with dotted names and carry the escrow id and
caller where known, so a single escrow's lifecycle can be grepped out of the
stream. Keys logged as ``None`` (an error raised before an escrow id exists,
a read with no caller) are dropped rather than rendered as ``null``.

Usage:
    from wap3_escrow.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.info("escrow.created", escrow_id=0, tx_hash="0xabc...")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.types import EventDict, Processor

# Loggers that chatter at DEBUG on every RPC call, query or request
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "web3", "urllib3", "httpx", "httpcore")


def drop_unset_fields(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    """structlog processor: remove keys whose value is None."""
    return {key: value for key, value in event_dict.items() if value is not None}


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Standard Python log level name; unknown names fall back to DEBUG.
        json_logs: One JSON object per line with tracebacks inlined, instead of
            the colored console renderer.
    """
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        drop_unset_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    final: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_logs:
        final += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(foreign_pre_chain=shared, processors=final)
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger bound to `name`, normally the calling module's ``__name__``."""
    return structlog.get_logger(name)
