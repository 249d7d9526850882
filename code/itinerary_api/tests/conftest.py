"""Shared fakes for the itinerary job tests."""
from __future__ import annotations

import asyncio
import copy
import itertools
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest

from itinerary_api.integrations.document_store import AlreadyExists, NotFound, StoreError
from itinerary_api.jobs import JobOrchestrator
from itinerary_api.supervisor import JobSupervisor


def make_itinerary(days: int = 3) -> dict:
    return {
        "itinerary": [
            {
                "day": n,
                "theme": f"Day {n} highlights",
                "activities": [
                    {"time": "Morning", "description": "Walk the old town.", "location": "Old Town"},
                    {"time": "Evening", "description": "Dinner by the river.", "location": "Riverside"},
                ],
            }
            for n in range(1, days + 1)
        ]
    }


class InMemoryDocumentStore:
    """Dict-backed store honouring the create/patch/get contract."""

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.create_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.patch_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.create_error: Optional[StoreError] = None
        self.patch_error: Optional[StoreError] = None
        self.closed = False
        # When set, create_record blocks until the event fires.
        self.create_gate: Optional[asyncio.Event] = None

    async def create_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        self.create_calls.append((doc_id, copy.deepcopy(dict(fields))))
        if self.create_error is not None:
            raise self.create_error
        if self.create_gate is not None:
            await self.create_gate.wait()
        if doc_id in self.documents:
            raise AlreadyExists(f"document {doc_id!r} already exists", doc_id)
        self.documents[doc_id] = copy.deepcopy(dict(fields))

    async def patch_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        self.patch_calls.append((doc_id, copy.deepcopy(dict(fields))))
        if self.patch_error is not None:
            raise self.patch_error
        if doc_id not in self.documents:
            raise NotFound(f"document {doc_id!r} not found", doc_id)
        self.documents[doc_id].update(copy.deepcopy(dict(fields)))

    async def get_record(self, doc_id: str) -> Dict[str, Any]:
        if doc_id not in self.documents:
            raise NotFound(f"document {doc_id!r} not found", doc_id)
        return copy.deepcopy(self.documents[doc_id])

    async def close(self) -> None:
        self.closed = True


class FakeGenerator:
    """Returns ``result`` (or raises ``error``) once ``gate`` is set."""

    def __init__(self, result: Any = None, error: Optional[BaseException] = None) -> None:
        self.result = result if result is not None else make_itinerary(3)
        self.error = error
        self.gate = asyncio.Event()
        self.gate.set()
        self.calls: List[Tuple[str, int]] = []

    def hold(self) -> None:
        self.gate.clear()

    def release(self) -> None:
        self.gate.set()

    async def generate(self, destination: str, duration_days: int) -> Any:
        self.calls.append((destination, duration_days))
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def supervisor() -> JobSupervisor:
    return JobSupervisor()


@pytest.fixture
def orchestrator(store, generator, supervisor) -> JobOrchestrator:
    counter = itertools.count(1)
    return JobOrchestrator(
        store=store,
        generator=generator,
        supervisor=supervisor,
        max_duration_days=14,
        id_factory=lambda: f"job-{next(counter)}",
    )
