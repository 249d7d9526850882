"""Document store contract used by the job orchestrator.

Implementations:
  - FirestoreDocumentStore  (firestore_store.py)  production, Firestore REST API
  - SqliteDocumentStore     (sqlite_store.py)     local development

Every call is a single atomic operation on one document. Field names are the
store document's (camelCase) names; values are plain JSON-compatible Python.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Protocol


class StoreError(Exception):
    """Base class for document store failures."""

    def __init__(self, message: str, doc_id: str | None = None) -> None:
        super().__init__(message)
        self.doc_id = doc_id


class AlreadyExists(StoreError):
    """create_record hit an occupied key."""


class NotFound(StoreError):
    """patch_record / get_record targeted a missing document."""


class StoreUnavailable(StoreError):
    """Transport, authentication or server-side failure."""


class DocumentStore(Protocol):
    async def create_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Insert a new document; never overwrites (``AlreadyExists``)."""
        ...

    async def patch_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Update only the named fields of an existing document (``NotFound``)."""
        ...

    async def get_record(self, doc_id: str) -> Dict[str, Any]:
        """Point read of a whole document (``NotFound``)."""
        ...

    async def close(self) -> None:
        ...
