"""Datadog APM tracing for the itinerary API.

``configure_tracing()`` patches FastAPI, httpx and sqlite so that inbound
requests and every outbound call to the LLM backend or Firestore get spans
automatically. Job-level work adds manual spans:

    with create_span("itinerary.job.generate", resource=job_id) as span:
        span.set_tag("job.duration_days", 5)
        ...

Everything here is a no-op unless ``DD_API_KEY`` is set and
``DD_TRACE_ENABLED`` is not false.
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import structlog

log = structlog.get_logger(__name__)

_tracer = None


def tracing_enabled() -> bool:
    api_key = os.getenv("DD_API_KEY", "")
    if not api_key or api_key == "your_datadog_api_key_here":
        return False
    return os.getenv("DD_TRACE_ENABLED", "true").lower() not in ("false", "0", "no")


def configure_tracing() -> bool:
    """Patch integrations and point the global tracer at the local agent.

    Returns True when tracing is active. Subsequent calls are no-ops.
    """
    global _tracer

    if _tracer is not None:
        return True
    if not tracing_enabled():
        log.debug("dd_tracing_disabled")
        return False

    from ddtrace import patch, tracer

    try:
        patch(fastapi=True, httpx=True, sqlite3=True, logging=True)
        tracer.configure(
            hostname=os.getenv("DD_AGENT_HOST", "localhost"),
            port=int(os.getenv("DD_TRACE_AGENT_PORT", "8126")),
        )
    except Exception as exc:  # noqa: BLE001
        log.warning("dd_tracing_init_failed", error=str(exc))
        return False

    _tracer = tracer
    log.info(
        "dd_tracing_configured",
        agent_host=os.getenv("DD_AGENT_HOST", "localhost"),
        service=os.getenv("DD_SERVICE", "itinerary-api"),
    )
    return True


def get_tracer():
    """The configured ddtrace tracer, or None while tracing is off."""
    return _tracer


@contextmanager
def create_span(
    name: str,
    resource: Optional[str] = None,
    span_type: Optional[str] = None,
    tags: Optional[Dict[str, Any]] = None,
) -> Generator[Any, None, None]:
    """Open a ddtrace span, or yield a :class:`_NoopSpan` when tracing is off.

    Exceptions raised inside the block mark the span as errored and propagate.
    """
    tracer = get_tracer()
    if tracer is None:
        yield _NoopSpan()
        return

    service = os.getenv("DD_SERVICE", "itinerary-api")
    with tracer.trace(name, resource=resource, service=service, span_type=span_type) as span:
        for key, value in (tags or {}).items():
            span.set_tag(key, value)
        try:
            yield span
        except Exception as exc:
            span.error = 1
            span.set_tag("error.type", type(exc).__name__)
            span.set_tag("error.message", str(exc))
            raise


def get_current_trace_ids() -> Dict[str, str]:
    """Trace and span id of the active span, for log correlation."""
    tracer = get_tracer()
    if tracer is None:
        return {}
    span = tracer.current_span()
    if span is None:
        return {}
    return {"dd.trace_id": str(span.trace_id), "dd.span_id": str(span.span_id)}


class _NoopSpan:
    """Span stand-in used while tracing is disabled."""

    error: int = 0

    def set_tag(self, key: str, value: Any) -> None:
        pass

    def finish(self) -> None:
        pass
