"""
Logging setup for tokenwise.

All modules log through ``structlog.get_logger()`` with an event name and
key/value context. ``setup_logging`` routes those events to stderr either as
JSON lines or as coloured console output.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from tokenwise.core.config import get_settings

SERVICE_NAME = "tokenwise"

# Context keys whose float values are rounded to micro-dollars
COST_KEYS = frozenset({"cost", "estimated_cost", "spent", "total_cost", "cost_saved"})


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level}")
    return number


def add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def round_costs(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key in COST_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, float):
            event_dict[key] = round(value, 6)
    return event_dict


def build_processors(json_format: bool) -> list[Processor]:
    """Processor chain for the chosen output format."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service,
        round_costs,
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Log level name; defaults to ``TOKENWISE_LOG_LEVEL``
        json_format: Emit JSON lines; defaults to ``TOKENWISE_LOG_FORMAT == "json"``
        stream: Output stream, stderr by default

    Raises:
        ValueError: if the level name is unknown
    """
    optimizer = get_settings().optimizer
    number = _level_number(level or optimizer.log_level)
    if json_format is None:
        json_format = optimizer.log_format == "json"
    stream = stream or sys.stderr

    # Third-party libraries (anthropic, httpx) log through the stdlib
    logging.basicConfig(format="%(message)s", stream=stream, level=number, force=True)

    structlog.configure(
        processors=build_processors(json_format),
        wrapper_class=structlog.make_filtering_bound_logger(number),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind values to every event logged in the current context.

    Tasks created inside the block inherit the binding.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
