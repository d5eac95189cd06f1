"""
structlog setup for the monitor.

Every check runs inside ``source_context()``, so each line logged while a
profile is being checked carries ``source=<handle>`` without the call
sites repeating it. Production renders one JSON object per line; any
other environment gets the colored console renderer.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import Processor

from src.config.settings import Settings, get_settings
from src.observability.tracing import add_trace_context

# Chatty at INFO: one line per HTTP request or pool event
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "uvicorn.access")


def _processors(settings: Settings) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.tracing_enabled:
        processors.append(add_trace_context)

    if settings.is_production:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging() -> None:
    """
    Configure structlog and the stdlib root logger from settings.

    Leaf modules (strategies, delivery, storage) log through stdlib
    ``logging``; the engine logs through structlog. Both end up on stdout
    at ``LOG_LEVEL``.
    """
    settings = get_settings()

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def source_context(source_id: str) -> Iterator[None]:
    """Tag every log line inside the block with the source handle."""
    with structlog.contextvars.bound_contextvars(source=source_id):
        yield
