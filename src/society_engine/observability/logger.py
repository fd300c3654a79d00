"""Structured logging with operation_id support.

Uses structlog over stdlib logging. Modules keep using
``logging.getLogger(__name__)``; once ``setup_logging`` has run, every entry
carries the current operation_id so one command's log lines can be
correlated.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import structlog

from society_engine.core.ids import new_id

# Context var for operation_id propagation
_operation_id: ContextVar[str] = ContextVar("operation_id", default="")


def get_operation_id() -> str:
    """Get current operation ID from context, creating one if unset."""
    oid = _operation_id.get()
    if not oid:
        oid = new_id()
        _operation_id.set(oid)
    return oid


def set_operation_id(operation_id: str) -> None:
    _operation_id.set(operation_id)


@contextmanager
def operation_scope(operation_id: str | None = None) -> Iterator[str]:
    """Bind a fresh operation_id for the duration of the block."""
    token = _operation_id.set(operation_id or new_id())
    try:
        yield _operation_id.get()
    finally:
        _operation_id.reset(token)


def _add_operation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: add operation_id to every log entry."""
    event_dict["operation_id"] = get_operation_id()
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for the engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for production, "console" for development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_operation_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer() if format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route plain stdlib records through the same renderer
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
