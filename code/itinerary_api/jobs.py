"""Itinerary job orchestration.

Generation is slow (tens of seconds), so ``POST /itinerary`` submits a job and
returns 202 + jobId immediately; the client then watches the job document
until ``status`` is "completed" or "failed".

Per job, strictly in this order:
  1. submit() writes the ``processing`` document (create, never upsert)
  2. submit() registers the background unit with the JobSupervisor and returns;
     the job id is reserved with the supervisor before step 1 so a shutdown
     drain waits for the write to land
  3. the unit calls the LLM once and writes exactly one terminal patch

If that terminal patch cannot be written the job stays ``processing`` for
good; this is logged as ``job_finalize_failed`` and counted as stranded.
There is no reconciliation sweep.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import structlog
from pydantic import ValidationError

from itinerary_api.integrations.datadog_metrics import (
    track_job_creation_failed,
    track_job_finished,
    track_job_rejected,
    track_job_stranded,
    track_job_submitted,
)
from itinerary_api.integrations.dd_tracing import create_span
from itinerary_api.integrations.document_store import DocumentStore, StoreError
from itinerary_api.integrations.llm_client import BackendResponseInvalid, ItineraryGenerator
from itinerary_api.integrations.logging_setup import bind_job_context
from itinerary_api.models.itinerary import Itinerary, parse_itinerary
from itinerary_api.models.job import (
    DEFAULT_MAX_DURATION_DAYS,
    ItineraryRequest,
    JobRecord,
    JobStatus,
    completed_patch,
    failed_patch,
    utc_now,
)
from itinerary_api.supervisor import JobSupervisor, SupervisorClosed, SupervisorError

log = structlog.get_logger(__name__)


def new_job_id() -> str:
    return str(uuid.uuid4())


class JobError(Exception):
    pass


class InvalidInput(JobError):
    """Submission rejected before any side effect."""


class JobCreationFailed(JobError):
    """The initial ``processing`` document could not be written; no job exists."""


@dataclass(frozen=True)
class SubmitResult:
    job_id: str


def describe_error(exc: BaseException) -> str:
    """``"<ErrorType>: <message>"`` as stored in a failed job's ``error`` field."""
    message = str(exc).strip()
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())) or "body"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


class JobOrchestrator:
    """Owns the job state machine: processing -> completed | failed."""

    def __init__(
        self,
        store: DocumentStore,
        generator: ItineraryGenerator,
        supervisor: JobSupervisor,
        max_duration_days: int = DEFAULT_MAX_DURATION_DAYS,
        id_factory: Callable[[], str] = new_job_id,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.generator = generator
        self.supervisor = supervisor
        self.max_duration_days = max_duration_days
        self._id_factory = id_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate(self, payload: Any) -> ItineraryRequest:
        if isinstance(payload, ItineraryRequest):
            payload = payload.model_dump(by_alias=True)
        if not isinstance(payload, Mapping):
            raise InvalidInput("request body must be a JSON object")
        try:
            return ItineraryRequest.model_validate(
                dict(payload), context={"max_duration_days": self.max_duration_days}
            )
        except ValidationError as exc:
            raise InvalidInput(_format_validation_error(exc)) from exc

    async def submit(self, payload: Any) -> SubmitResult:
        """Validate, persist the ``processing`` document, schedule generation.

        Returns once the document exists and the background unit is registered;
        never waits for generation.

        Raises:
            InvalidInput: bad destination/durationDays (nothing written).
            JobCreationFailed: the initial write failed or the service is
                shutting down (no job id handed out, nothing scheduled).
        """
        try:
            request = self.validate(payload)
        except InvalidInput as exc:
            track_job_rejected("invalid_input")
            log.info("job_rejected", reason=str(exc))
            raise

        job = JobRecord.new(self._id_factory(), request, created_at=self._clock())
        try:
            self.supervisor.reserve(job.id)
        except SupervisorError as exc:
            track_job_creation_failed(type(exc).__name__)
            if isinstance(exc, SupervisorClosed):
                raise JobCreationFailed("service is shutting down and not accepting jobs") from exc
            raise JobCreationFailed(f"could not reserve job: {exc}") from exc

        try:
            try:
                with create_span("itinerary.job.create", resource=job.id):
                    await self.store.create_record(job.id, job.to_document())
            except StoreError as exc:
                track_job_creation_failed(type(exc).__name__)
                log.error("job_creation_failed", job_id=job.id, error=describe_error(exc))
                raise JobCreationFailed(f"could not create job record: {exc}") from exc

            try:
                self.supervisor.spawn(job.id, self.run_job(job))
            except SupervisorError as exc:
                # Record exists but nothing will finish it; surface it the same way
                # as a failed terminal write.
                track_job_stranded(type(exc).__name__)
                log.error("job_schedule_failed", job_id=job.id, error=describe_error(exc))
                raise JobCreationFailed(f"could not schedule job: {exc}") from exc
        finally:
            self.supervisor.release(job.id)

        track_job_submitted(job.duration_days)
        log.info(
            "job_submitted",
            job_id=job.id,
            destination=job.destination,
            duration_days=job.duration_days,
        )
        return SubmitResult(job_id=job.id)

    # ------------------------------------------------------------------
    # Background unit
    # ------------------------------------------------------------------

    async def run_job(self, job: JobRecord) -> Optional[JobStatus]:
        """Generate, then write the single terminal patch.

        Never raises. Returns the terminal status written, or None when the
        terminal write failed and the job is stranded in ``processing``.
        """
        with bind_job_context(job.id):
            start = time.perf_counter()
            error_type: Optional[str] = None
            try:
                itinerary = await self._generate(job)
            except Exception as exc:  # noqa: BLE001
                error_type = type(exc).__name__
                status = JobStatus.FAILED
                patch = failed_patch(describe_error(exc), self._clock())
                log.warning("job_generation_failed", error=describe_error(exc))
            else:
                status = JobStatus.COMPLETED
                patch = completed_patch(itinerary, self._clock())

            try:
                with create_span("itinerary.job.finalize", resource=job.id, tags={"job.status": status.value}):
                    await self.store.patch_record(job.id, patch)
            except Exception as exc:  # noqa: BLE001
                track_job_stranded(type(exc).__name__)
                log.error(
                    "job_finalize_failed",
                    intended_status=status.value,
                    error=describe_error(exc),
                    stranded=True,
                )
                return None

            duration_ms = (time.perf_counter() - start) * 1000
            track_job_finished(status.value, duration_ms, error_type)
            log.info("job_finished", status=status.value, duration_ms=round(duration_ms, 1))
            return status

    async def _generate(self, job: JobRecord) -> Itinerary:
        with create_span("itinerary.job.generate", resource=job.id) as span:
            span.set_tag("job.duration_days", job.duration_days)
            result = await self.generator.generate(job.destination, job.duration_days)
        try:
            return parse_itinerary(result)
        except (ValidationError, TypeError) as exc:
            raise BackendResponseInvalid(f"generated itinerary is malformed: {exc}") from exc

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> JobRecord:
        """Point read of a job document. Raises ``NotFound`` / ``StoreUnavailable``."""
        document: Dict[str, Any] = await self.store.get_record(job_id)
        return JobRecord.from_document(document)
