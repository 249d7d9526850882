"""Datadog custom metrics for itinerary jobs.

Sends StatsD metrics to the Datadog Agent.
Falls back silently when DD_API_KEY is not configured (local dev).

Metric catalogue
----------------
Jobs:
  itinerary.jobs.submitted         increment  job accepted (202 returned)
  itinerary.jobs.rejected          increment  submission failed validation (tagged by reason)
  itinerary.jobs.creation_failed   increment  initial record could not be written
  itinerary.jobs.completed         increment  terminal write: completed
  itinerary.jobs.failed            increment  terminal write: failed (tagged by error_type)
  itinerary.jobs.stranded          increment  terminal write itself failed, job left processing
  itinerary.jobs.duration_ms       histogram  submission -> terminal write
  itinerary.jobs.in_flight         gauge      background units registered with the supervisor

LLM backend:
  itinerary.llm.latency_ms         histogram  one generation round trip (tagged by status)

Document store:
  itinerary.store.errors           increment  store call failures (tagged by operation/error_type)
"""
from __future__ import annotations

import os
from typing import List, Optional

import structlog

log = structlog.get_logger(__name__)

_dd_initialized = False


def _ensure_initialized() -> None:
    global _dd_initialized
    if _dd_initialized:
        return
    api_key = os.getenv("DD_API_KEY", "")
    if not api_key or api_key == "your_datadog_api_key_here":
        return
    from datadog import initialize

    try:
        initialize(
            statsd_host=os.getenv("DD_AGENT_HOST", "localhost"),
            statsd_port=int(os.getenv("DD_STATSD_PORT", "8125")),
        )
    except Exception as exc:  # noqa: BLE001
        log.warning("datadog_init_failed", error=str(exc))
        return
    _dd_initialized = True
    log.info("datadog_metrics_initialized")


def _statsd():
    """Return the statsd client once initialised, else None."""
    _ensure_initialized()
    if not _dd_initialized:
        return None
    from datadog import statsd

    return statsd


def _tags(*pairs: Optional[str]) -> List[str]:
    env = os.getenv("DD_ENV", "development")
    return [f"env:{env}", *(p for p in pairs if p)]


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def track_job_submitted(duration_days: int) -> None:
    sd = _statsd()
    if sd:
        sd.increment("itinerary.jobs.submitted", tags=_tags(f"duration_days:{duration_days}"))


def track_job_rejected(reason: str) -> None:
    sd = _statsd()
    if sd:
        sd.increment("itinerary.jobs.rejected", tags=_tags(f"reason:{reason}"))


def track_job_creation_failed(error_type: str) -> None:
    sd = _statsd()
    if sd:
        sd.increment("itinerary.jobs.creation_failed", tags=_tags(f"error_type:{error_type}"))


def track_job_finished(status: str, duration_ms: float, error_type: Optional[str] = None) -> None:
    """Record a terminal write: ``status`` is ``completed`` or ``failed``."""
    sd = _statsd()
    if sd:
        error_tag = f"error_type:{error_type}" if error_type else None
        sd.increment(f"itinerary.jobs.{status}", tags=_tags(error_tag))
        sd.histogram("itinerary.jobs.duration_ms", duration_ms, tags=_tags(f"status:{status}"))


def track_job_stranded(error_type: str) -> None:
    sd = _statsd()
    if sd:
        sd.increment("itinerary.jobs.stranded", tags=_tags(f"error_type:{error_type}"))


def track_jobs_in_flight(count: int) -> None:
    sd = _statsd()
    if sd:
        sd.gauge("itinerary.jobs.in_flight", count, tags=_tags())


# ---------------------------------------------------------------------------
# External calls
# ---------------------------------------------------------------------------


def track_llm_call(latency_ms: float, status: str) -> None:
    sd = _statsd()
    if sd:
        sd.histogram("itinerary.llm.latency_ms", latency_ms, tags=_tags(f"status:{status}"))


def track_store_error(operation: str, error_type: str) -> None:
    sd = _statsd()
    if sd:
        sd.increment(
            "itinerary.store.errors",
            tags=_tags(f"operation:{operation}", f"error_type:{error_type}"),
        )
