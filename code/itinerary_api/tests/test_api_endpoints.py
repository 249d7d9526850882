from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from itinerary_api.config import Settings
from itinerary_api.integrations.document_store import StoreUnavailable
from itinerary_api.main import create_app

from conftest import FakeGenerator, InMemoryDocumentStore


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config() -> Settings:
    cfg = Settings()
    cfg.ENVIRONMENT = "test"
    cfg.MAX_DURATION_DAYS = 14
    cfg.JOB_DRAIN_TIMEOUT_S = 5
    cfg.CORS_ALLOW_ORIGINS = "*"
    return cfg


@pytest.fixture
def api_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def api_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
async def app(anyio_backend, config, api_store, api_generator):
    application = create_app(config, store=api_store, generator=api_generator)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(anyio_backend, app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.anyio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "itinerary-api"


@pytest.mark.anyio
async def test_submit_then_poll_until_completed(app, client, api_generator):
    api_generator.hold()

    response = await client.post("/itinerary", json={"destination": "Tokyo, Japan", "durationDays": 3})
    assert response.status_code == 202
    job_id = response.json()["jobId"]

    response = await client.get(f"/api/itinerary/{job_id}")
    assert response.status_code == 200
    job = response.json()
    assert job["status"] == "processing"
    assert job["itinerary"] is None
    assert job["completedAt"] is None

    api_generator.release()
    await app.state.supervisor.wait(job_id)

    job = (await client.get(f"/api/itinerary/{job_id}")).json()
    assert job["status"] == "completed"
    assert len(job["itinerary"]["itinerary"]) == 3
    assert job["error"] is None
    assert job["completedAt"] >= job["createdAt"]


@pytest.mark.anyio
async def test_api_prefixed_submit_route(client, api_store):
    response = await client.post("/api/itinerary", json={"destination": "Oslo", "durationDays": 1})
    assert response.status_code == 202
    assert response.json()["jobId"] in api_store.documents


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {"destination": "", "durationDays": 3},
        {"destination": "Paris", "durationDays": 0},
        {"destination": "Paris"},
        {"destination": "Paris", "durationDays": 30},
    ],
)
async def test_invalid_input_returns_400(client, api_store, body):
    response = await client.post("/itinerary", json=body)

    assert response.status_code == 400
    assert response.json()["error"]
    assert api_store.documents == {}


@pytest.mark.anyio
async def test_malformed_json_returns_400(client, api_store):
    response = await client.post(
        "/itinerary", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Request body must be valid JSON"}
    assert api_store.create_calls == []


@pytest.mark.anyio
async def test_creation_failure_returns_503(client, api_store, api_generator):
    api_store.create_error = StoreUnavailable("Firestore create error 503: down")

    response = await client.post("/itinerary", json={"destination": "Cairo", "durationDays": 2})

    assert response.status_code == 503
    assert "jobId" not in response.json()
    assert api_generator.calls == []


@pytest.mark.anyio
async def test_unknown_job_returns_404(client):
    response = await client.get("/api/itinerary/does-not-exist")
    assert response.status_code == 404
    assert "not found" in response.json()["error"]


@pytest.mark.anyio
async def test_cors_preflight(client):
    response = await client.options(
        "/itinerary",
        headers={
            "Origin": "https://ui.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.anyio
async def test_shutdown_drains_background_jobs(config, api_store):
    generator = FakeGenerator()
    generator.hold()
    application = create_app(config, store=api_store, generator=generator)

    async with application.router.lifespan_context(application):
        async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as ac:
            response = await ac.post("/itinerary", json={"destination": "Rome", "durationDays": 2})
        job_id = response.json()["jobId"]
        generator.release()

    assert api_store.documents[job_id]["status"] == "completed"
    assert api_store.closed
