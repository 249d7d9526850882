"""
Itinerary API: FastAPI app entry point.
Run from repo root with PYTHONPATH=code:  uvicorn itinerary_api.main:app --reload --port 8000
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from itinerary_api.config import Settings, settings
from itinerary_api.integrations.dd_tracing import configure_tracing
from itinerary_api.integrations.document_store import DocumentStore
from itinerary_api.integrations.firestore_store import FirestoreDocumentStore
from itinerary_api.integrations.llm_client import ItineraryGenerator, OpenAIItineraryGenerator
from itinerary_api.integrations.logging_setup import configure_logging
from itinerary_api.integrations.sqlite_store import SqliteDocumentStore
from itinerary_api.jobs import JobOrchestrator
from itinerary_api.routers import itinerary as itinerary_router
from itinerary_api.supervisor import JobSupervisor

VERSION = "0.1.0"

log = logging.getLogger(__name__)


def build_store(config: Settings) -> DocumentStore:
    if config.DOCUMENT_STORE == "firestore":
        return FirestoreDocumentStore.from_settings(config)
    if config.DOCUMENT_STORE == "sqlite":
        return SqliteDocumentStore.from_settings(config)
    raise ValueError(f"Unknown DOCUMENT_STORE {config.DOCUMENT_STORE!r} (expected firestore or sqlite)")


def create_app(
    config: Settings = settings,
    store: Optional[DocumentStore] = None,
    generator: Optional[ItineraryGenerator] = None,
) -> FastAPI:
    """Build the app. ``store`` / ``generator`` override the configured clients."""

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        configure_logging(config.LOG_LEVEL, config.ENVIRONMENT)
        configure_tracing()
        if not config.llm_api_key_set and generator is None:
            log.warning("llm_api_key_missing: generation requests will fail")

        job_store = store or build_store(config)
        job_generator = generator or OpenAIItineraryGenerator.from_settings(config)
        supervisor = JobSupervisor()
        app.state.supervisor = supervisor
        app.state.orchestrator = JobOrchestrator(
            store=job_store,
            generator=job_generator,
            supervisor=supervisor,
            max_duration_days=config.MAX_DURATION_DAYS,
        )
        try:
            yield
        finally:
            await supervisor.drain(timeout=config.JOB_DRAIN_TIMEOUT_S)
            for client in (job_generator, job_store):
                close = getattr(client, "close", None)
                if close is not None:
                    await close()

    app = FastAPI(
        title="Itinerary API",
        description="Asynchronous multi-day travel itinerary generation",
        version=VERSION,
        lifespan=_lifespan,
    )

    origins = config.cors_origins
    allow_all = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else origins,
        allow_credentials=not allow_all,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch unhandled exceptions and return 500 with detail in development."""
        if isinstance(exc, HTTPException):
            raise exc
        log.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content=(
                {"error": str(exc), "type": type(exc).__name__}
                if config.is_development
                else {"error": "Internal server error"}
            ),
        )

    app.include_router(itinerary_router.router)

    @app.get("/")
    async def root():
        return {"service": "itinerary-api", "version": VERSION, "docs": "/docs"}

    @app.get("/health")
    async def health():
        """Basic health check. Returns 200 when the service is running."""
        return {"status": "ok"}

    return app


app = create_app()
