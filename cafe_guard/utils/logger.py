"""Structured logging utilities for cafe_guard.

All modules log through structlog. Every log line carries the request_id of
the request being handled (when there is one) so the rate limiter, the
authorization resolver and the audit sink can be correlated.

Environment:
  LOG_LEVEL  DEBUG / INFO / WARNING / ERROR / CRITICAL (default INFO, DEBUG if DEBUG=true)
  JSON_LOGS  "false" switches to the coloured console renderer
"""

import logging
import os
import sys
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the whole process.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: JSON lines when True, console format otherwise.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def configure_from_env() -> bool:
    """Apply LOG_LEVEL / JSON_LOGS / DEBUG. Returns the DEBUG flag."""
    debug = os.getenv("DEBUG", "false").lower() == "true"
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "DEBUG" if debug else "INFO"),
        json_output=os.getenv("JSON_LOGS", "true").lower() == "true",
    )
    return debug


def get_logger(name: str = "cafe_guard") -> structlog.stdlib.BoundLogger:
    """Logger bound to ``logger=<name>`` so the audit sink is distinguishable."""
    return structlog.get_logger(name).bind(logger=name)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


configure_logging()
