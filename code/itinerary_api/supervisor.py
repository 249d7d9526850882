"""Supervised background execution for job units.

A bare ``asyncio.create_task`` keeps only a weak reference to the task and
nothing waits for it at shutdown, so work can be garbage collected or torn
down with the server. ``JobSupervisor`` holds a strong reference to every
unit until it finishes, and the app lifespan drains it before exit.

    supervisor.spawn(job_id, orchestrator.run_job(job))   # synchronous, registered on return
    ...
    await supervisor.drain(timeout=120)                   # on shutdown
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Coroutine, Dict, List, Optional

import structlog

from itinerary_api.integrations.datadog_metrics import track_jobs_in_flight

log = structlog.get_logger(__name__)


class SupervisorError(RuntimeError):
    pass


class SupervisorClosed(SupervisorError):
    """The supervisor has drained and accepts no new units."""


class DuplicateJobError(SupervisorError):
    """A unit for this job id was already spawned."""


class JobSupervisor:
    """Registry of in-flight background units, one per job id.

    A submission reserves its job id before writing the job document and
    the reservation is consumed by ``spawn``. ``drain`` waits for open
    reservations as well as running units, so a document written during
    shutdown still gets its unit.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}
        self._spawned: set[str] = set()
        self._reserved: set[str] = set()
        self._reservation_settled = asyncio.Event()
        self._draining = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def accepting(self) -> bool:
        """False once draining has started; no new submissions are admitted."""
        return not (self._draining or self._closed)

    @property
    def pending_job_ids(self) -> List[str]:
        return sorted(self._tasks)

    @property
    def reserved_job_ids(self) -> List[str]:
        return sorted(self._reserved)

    def reserve(self, job_id: str) -> None:
        """Admit a new submission for ``job_id`` ahead of its ``spawn``."""
        if not self.accepting:
            raise SupervisorClosed("job supervisor is not accepting new jobs")
        if job_id in self._spawned or job_id in self._reserved:
            raise DuplicateJobError(f"job {job_id!r} already has a background unit")
        self._reserved.add(job_id)

    def release(self, job_id: str) -> None:
        """Drop a reservation. No-op once ``spawn`` has consumed it."""
        if job_id in self._reserved:
            self._reserved.discard(job_id)
            self._reservation_settled.set()

    def spawn(self, job_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule ``coro`` and register it under ``job_id`` before returning.

        Each job id may be spawned once for the lifetime of the supervisor.
        Must be called from inside the running event loop.
        """
        if self._closed:
            coro.close()
            raise SupervisorClosed("job supervisor is closed")
        if job_id in self._spawned:
            coro.close()
            raise DuplicateJobError(f"job {job_id!r} already has a background unit")

        task = asyncio.get_running_loop().create_task(coro, name=f"itinerary-job-{job_id}")
        self._spawned.add(job_id)
        self._tasks[job_id] = task
        self.release(job_id)
        task.add_done_callback(lambda t: self._on_done(job_id, t))
        track_jobs_in_flight(len(self._tasks))
        log.debug("job_unit_spawned", job_id=job_id, in_flight=len(self._tasks))
        return task

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        track_jobs_in_flight(len(self._tasks))
        if task.cancelled():
            log.warning("job_unit_cancelled", job_id=job_id)
            return
        exc = task.exception()
        if exc is not None:
            log.error("job_unit_crashed", job_id=job_id, error=str(exc), exc_info=exc)

    async def wait(self, job_id: str) -> Any:
        """Await one unit's result, if it is still running."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def drain(self, timeout: Optional[float] = None) -> List[str]:
        """Wait for every reservation and unit, including units spawned while
        draining, then close.

        New reservations are refused from the moment draining starts. Units
        are never cancelled. Returns the job ids still reserved or running
        when ``timeout`` expired (empty when everything finished).
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self._draining = True
        log.info("job_supervisor_draining", in_flight=len(self._tasks), reserved=len(self._reserved))
        while self._tasks or self._reserved:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                break
            waiters = list(self._tasks.values())
            settled = None
            if self._reserved:
                self._reservation_settled.clear()
                settled = asyncio.ensure_future(self._reservation_settled.wait())
                waiters.append(settled)
            try:
                await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if settled is not None:
                    settled.cancel()
        self._closed = True

        pending = sorted(set(self._tasks) | self._reserved)
        if pending:
            log.error("job_supervisor_drain_timeout", pending_job_ids=pending)
        else:
            log.info("job_supervisor_drained")
        return pending
