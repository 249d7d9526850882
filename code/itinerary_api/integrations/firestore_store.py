"""Firestore REST client implementing the document store contract.

Documents live at ``projects/{project}/databases/(default)/documents/{collection}/{job_id}``.

  create  POST  .../{collection}?documentId={id}        409 -> AlreadyExists
  patch   PATCH .../{collection}/{id}?updateMask.fieldPaths=...&currentDocument.exists=true
                                                        404 -> NotFound
  get     GET   .../{collection}/{id}                   404 -> NotFound

Authentication uses a service-account OAuth token (google-auth). When
``FIRESTORE_EMULATOR_HOST`` is set the emulator is used with its fixed
``owner`` token instead.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional, Protocol

import google.auth.transport.requests
import httpx
import structlog
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

from itinerary_api.integrations.datadog_metrics import track_store_error
from itinerary_api.integrations.dd_tracing import create_span
from itinerary_api.integrations.document_store import (
    AlreadyExists,
    NotFound,
    StoreError,
    StoreUnavailable,
)
from itinerary_api.integrations.firestore_codec import decode_fields, encode_fields

log = structlog.get_logger(__name__)

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
DATASTORE_SCOPE = "https://www.googleapis.com/auth/datastore"
EMULATOR_TOKEN = "owner"

_UNAVAILABLE_STATUSES = {401, 403, 408, 429}


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


class TokenProvider(Protocol):
    async def token(self) -> str:
        ...


class StaticTokenProvider:
    """Fixed bearer token (emulator, tests)."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def token(self) -> str:
        return self._token


class ServiceAccountTokenProvider:
    """Caches a service-account access token and refreshes it when expired."""

    def __init__(self, service_account_info: Mapping[str, Any]) -> None:
        self._credentials = service_account.Credentials.from_service_account_info(
            dict(service_account_info), scopes=[DATASTORE_SCOPE]
        )
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                request = google.auth.transport.requests.Request()
                try:
                    # google-auth refreshes synchronously over requests
                    await asyncio.to_thread(self._credentials.refresh, request)
                except GoogleAuthError as exc:
                    track_store_error("auth", type(exc).__name__)
                    raise StoreUnavailable(f"Firestore token refresh failed: {exc}") from exc
            return self._credentials.token


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class FirestoreDocumentStore:
    """Async Firestore REST client scoped to one collection."""

    def __init__(
        self,
        project_id: str,
        tokens: TokenProvider,
        collection: str = "itineraries",
        base_url: str = FIRESTORE_BASE_URL,
        database: str = "(default)",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        if not project_id:
            raise ValueError("Firestore project id is required")
        self.collection = collection
        self._tokens = tokens
        self._collection_path = f"/projects/{project_id}/databases/{database}/documents/{collection}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings) -> "FirestoreDocumentStore":
        if settings.FIRESTORE_EMULATOR_HOST:
            return cls(
                project_id=settings.firestore_project_id or "demo-itinerary",
                tokens=StaticTokenProvider(EMULATOR_TOKEN),
                collection=settings.FIRESTORE_COLLECTION,
                base_url=f"http://{settings.FIRESTORE_EMULATOR_HOST}/v1",
            )
        return cls(
            project_id=settings.firestore_project_id,
            tokens=ServiceAccountTokenProvider(settings.service_account_info),
            collection=settings.FIRESTORE_COLLECTION,
        )

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def create_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        await self._request(
            "create",
            "POST",
            self._collection_path,
            doc_id,
            params={"documentId": doc_id},
            json={"fields": encode_fields(fields)},
        )
        log.debug("firestore_document_created", doc_id=doc_id, collection=self.collection)

    async def patch_record(self, doc_id: str, fields: Mapping[str, Any]) -> None:
        params = [("updateMask.fieldPaths", name) for name in fields]
        params.append(("currentDocument.exists", "true"))
        await self._request(
            "patch",
            "PATCH",
            f"{self._collection_path}/{doc_id}",
            doc_id,
            params=params,
            json={"fields": encode_fields(fields)},
        )
        log.debug("firestore_document_patched", doc_id=doc_id, fields=sorted(fields))

    async def get_record(self, doc_id: str) -> Dict[str, Any]:
        resp = await self._request("get", "GET", f"{self._collection_path}/{doc_id}", doc_id)
        return decode_fields(resp.json().get("fields", {}))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FirestoreDocumentStore":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        doc_id: str,
        **kwargs: Any,
    ) -> httpx.Response:
        token = await self._tokens.token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            with create_span(f"itinerary.store.{operation}", resource=self.collection, span_type="http"):
                resp = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            track_store_error(operation, type(exc).__name__)
            raise StoreUnavailable(f"Firestore {operation} transport error: {exc}", doc_id) from exc

        if resp.is_success:
            return resp

        error = _error_for_response(operation, resp, doc_id)
        track_store_error(operation, type(error).__name__)
        log.warning(
            "firestore_request_failed",
            operation=operation,
            doc_id=doc_id,
            status_code=resp.status_code,
        )
        raise error


def _error_for_response(operation: str, resp: httpx.Response, doc_id: str) -> StoreError:
    message = f"Firestore {operation} error {resp.status_code}: {resp.text}"
    if resp.status_code == 409:
        return AlreadyExists(message, doc_id)
    if resp.status_code == 404:
        return NotFound(message, doc_id)
    if resp.status_code in _UNAVAILABLE_STATUSES or resp.status_code >= 500:
        return StoreUnavailable(message, doc_id)
    return StoreError(message, doc_id)
