"""structlog configuration for the itinerary API.

Development renders to the console; every other environment emits one JSON
object per line for Datadog ingestion. Each event carries ``service``,
``env`` and ``version`` plus the active trace ids, and anything bound with
:func:`bind_job_context` (the background task binds ``job_id`` so that every
log line of one generation run can be correlated).

    from itinerary_api.integrations.logging_setup import configure_logging
    configure_logging()

    log = structlog.get_logger(__name__)
    log.info("job_submitted", job_id=job_id, destination=destination)
"""
from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping

import structlog

_PRETTY_ENVIRONMENTS = ("development", "dev", "local")
_NOISY_LOGGERS = ("httpx", "httpcore", "google.auth", "urllib3", "aiosqlite")


def configure_logging(level: str | None = None, environment: str | None = None) -> None:
    """Configure structlog and the stdlib root logger. Safe to call repeatedly."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    env = (environment or os.getenv("ENVIRONMENT", "development")).lower()

    root = logging.getLogger()
    root.setLevel(numeric_level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        root.addHandler(handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    pretty = env in _PRETTY_ENVIRONMENTS
    structlog.configure(
        processors=build_processors(pretty=pretty),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(__name__).debug("logging_configured", level=level_name, pretty=pretty)


def build_processors(pretty: bool) -> list:
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_context,
        add_trace_ids,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if pretty:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def add_service_context(
    logger: Any,
    method: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Datadog unified service tags."""
    event_dict.setdefault("service", os.getenv("DD_SERVICE", "itinerary-api"))
    event_dict.setdefault("env", os.getenv("DD_ENV", "development"))
    event_dict.setdefault("version", os.getenv("DD_VERSION", "0.1.0"))
    return event_dict


def add_trace_ids(
    logger: Any,
    method: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    # Imported here: dd_tracing logs through structlog itself.
    from itinerary_api.integrations.dd_tracing import get_current_trace_ids

    for key, value in get_current_trace_ids().items():
        event_dict.setdefault(key, value)
    return event_dict


@contextmanager
def bind_job_context(job_id: str, **extra: Any) -> Iterator[None]:
    """Bind ``job_id`` (and any extra keys) to every log event in this context.

    Contextvars are copied into each ``asyncio.Task`` at creation, so binding
    inside the background coroutine never leaks into the request handler.
    """
    tokens = structlog.contextvars.bind_contextvars(job_id=job_id, **extra)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
