"""Itinerary router

POST /itinerary, /api/itinerary   submit a generation job, 202 {"jobId"}
GET  /api/itinerary/{job_id}      current job document (status observation)

Clients either poll the GET endpoint or subscribe to the job document in the
store directly; both see the same camelCase document.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from itinerary_api.integrations.document_store import NotFound, StoreError
from itinerary_api.jobs import InvalidInput, JobCreationFailed, JobOrchestrator

log = logging.getLogger(__name__)
router = APIRouter(tags=["itinerary"])


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/itinerary", status_code=202)
@router.post("/api/itinerary", status_code=202)
async def submit_itinerary(
    request: Request,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Accept ``{"destination": str, "durationDays": int}`` and start generation."""
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Request body must be valid JSON")

    try:
        result = await orchestrator.submit(body)
    except InvalidInput as exc:
        return _error(400, str(exc))
    except JobCreationFailed as exc:
        log.warning("itinerary_submit_failed: %s", exc)
        return _error(503, str(exc))

    return JSONResponse(status_code=202, content={"jobId": result.job_id})


@router.get("/api/itinerary/{job_id}")
async def get_itinerary_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Return the job document.

    In progress:      processing
    Terminal states:  completed (``itinerary`` set) | failed (``error`` set)
    """
    try:
        job = await orchestrator.get_job(job_id)
    except NotFound:
        return _error(404, f"Job {job_id!r} not found")
    except StoreError as exc:
        log.warning("itinerary_job_read_failed job_id=%s: %s", job_id, exc)
        return _error(503, "Job store unavailable")
    return job.to_document()
