"""
Itinerary API: SQLite document store
Local-development stand-in for Firestore with the same contract.
Uses aiosqlite; each document is one JSON blob keyed by job id.
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Mapping

import aiosqlite
import structlog

from itinerary_api.integrations.datadog_metrics import track_store_error
from itinerary_api.integrations.document_store import AlreadyExists, NotFound, StoreUnavailable

log = structlog.get_logger(__name__)

CREATE_TABLES_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    document TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (collection, id)
);
"""


class SqliteDocumentStore:
    def __init__(self, db_path: Path | str, collection: str = "itineraries") -> None:
        self.db_path = Path(db_path)
        self.collection = collection
        self._init_lock = asyncio.Lock()
        self._initialized = False

    @classmethod
    def from_settings(cls, settings) -> "SqliteDocumentStore":
        return cls(settings.DATABASE_PATH, collection=settings.FIRESTORE_COLLECTION)

    async def init_db(self) -> None:
        """Create the schema once per store instance."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.executescript(CREATE_TABLES_SQL)
                await db.commit()
            self._initialized = True

    async def create_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        try:
            await self.init_db()
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO documents (collection, id, document) VALUES (?, ?, ?)",
                    (self.collection, doc_id, json.dumps(dict(fields))),
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            track_store_error("create", "AlreadyExists")
            raise AlreadyExists(f"document {doc_id!r} already exists", doc_id) from exc
        except aiosqlite.Error as exc:
            track_store_error("create", type(exc).__name__)
            raise StoreUnavailable(f"sqlite create error: {exc}", doc_id) from exc

    async def patch_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        try:
            await self.init_db()
            async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    document = await self._load(db, doc_id)
                    if document is None:
                        raise NotFound(f"document {doc_id!r} not found", doc_id)
                    document.update(fields)
                    await db.execute(
                        "UPDATE documents SET document = ?, updated_at = CURRENT_TIMESTAMP "
                        "WHERE collection = ? AND id = ?",
                        (json.dumps(document), self.collection, doc_id),
                    )
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")
        except aiosqlite.Error as exc:
            track_store_error("patch", type(exc).__name__)
            raise StoreUnavailable(f"sqlite patch error: {exc}", doc_id) from exc
        log.debug("sqlite_document_patched", doc_id=doc_id, fields=sorted(fields))

    async def get_record(self, doc_id: str) -> Dict[str, Any]:
        try:
            await self.init_db()
            async with aiosqlite.connect(self.db_path) as db:
                document = await self._load(db, doc_id)
        except aiosqlite.Error as exc:
            track_store_error("get", type(exc).__name__)
            raise StoreUnavailable(f"sqlite get error: {exc}", doc_id) from exc
        if document is None:
            raise NotFound(f"document {doc_id!r} not found", doc_id)
        return document

    async def close(self) -> None:
        # Connections are opened per call.
        return None

    async def _load(self, db: aiosqlite.Connection, doc_id: str) -> Dict[str, Any] | None:
        cursor = await db.execute(
            "SELECT document FROM documents WHERE collection = ? AND id = ?",
            (self.collection, doc_id),
        )
        row = await cursor.fetchone()
        return json.loads(row[0]) if row else None
