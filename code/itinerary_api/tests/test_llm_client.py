from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from itinerary_api.integrations.llm_client import (
    BackendError,
    BackendResponseInvalid,
    OpenAIItineraryGenerator,
    build_itinerary_prompt,
)
from itinerary_api.models.itinerary import Itinerary

from conftest import make_itinerary


def _completion(content) -> dict:
    return {"id": "chatcmpl-1", "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def _generator(handler, requests: List[httpx.Request]) -> OpenAIItineraryGenerator:
    def recording_handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(
        base_url="https://llm.test/v1",
        headers={"Authorization": "Bearer sk-test"},
        transport=httpx.MockTransport(recording_handler),
    )
    return OpenAIItineraryGenerator(api_key="sk-test", model="test-model", client=client)


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_prompt_is_deterministic_and_parameterised():
    prompt = build_itinerary_prompt("Tokyo, Japan", 5)

    assert prompt == build_itinerary_prompt("Tokyo, Japan", 5)
    assert "5-day trip to Tokyo, Japan" in prompt
    assert "all 5 days" in prompt
    assert "MUST be a valid JSON object" in prompt
    assert '"itinerary": [' in prompt


# ---------------------------------------------------------------------------
# generate()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_returns_parsed_itinerary():
    requests: List[httpx.Request] = []
    plan = make_itinerary(2)
    generator = _generator(lambda r: httpx.Response(200, json=_completion(json.dumps(plan))), requests)

    itinerary = await generator.generate("Lisbon", 2)

    assert isinstance(itinerary, Itinerary)
    assert itinerary.to_document() == plan
    (request,) = requests
    assert request.url.path == "/v1/chat/completions"
    body = json.loads(request.content)
    assert body["model"] == "test-model"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"] == [{"role": "user", "content": build_itinerary_prompt("Lisbon", 2)}]


@pytest.mark.asyncio
async def test_non_success_status_raises_backend_error_with_diagnostic():
    requests: List[httpx.Request] = []
    generator = _generator(lambda r: httpx.Response(429, text="Rate limit reached"), requests)

    with pytest.raises(BackendError) as excinfo:
        await generator.generate("Lisbon", 2)

    assert excinfo.value.status_code == 429
    assert str(excinfo.value) == "LLM API error: 429 Rate limit reached"
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_transport_failure_raises_backend_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    generator = _generator(handler, [])

    with pytest.raises(BackendError, match="ReadTimeout"):
        await generator.generate("Lisbon", 2)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "envelope",
    [
        {},
        {"choices": []},
        {"choices": [{"message": {}}]},
        _completion(""),
        _completion(None),
    ],
)
async def test_missing_content_raises_response_invalid(envelope):
    generator = _generator(lambda r: httpx.Response(200, json=envelope), [])

    with pytest.raises(BackendResponseInvalid, match="Invalid or empty response"):
        await generator.generate("Lisbon", 2)


@pytest.mark.asyncio
async def test_non_json_content_raises_response_invalid():
    generator = _generator(
        lambda r: httpx.Response(200, json=_completion("Sure! Here is your trip: ...")), []
    )

    with pytest.raises(BackendResponseInvalid, match="Failed to parse"):
        await generator.generate("Lisbon", 2)


@pytest.mark.asyncio
async def test_wrong_shape_raises_response_invalid():
    content = json.dumps({"itinerary": [{"day": "one", "theme": "x", "activities": []}]})
    generator = _generator(lambda r: httpx.Response(200, json=_completion(content)), [])

    with pytest.raises(BackendResponseInvalid, match="not a valid itinerary"):
        await generator.generate("Lisbon", 2)


@pytest.mark.asyncio
async def test_non_json_body_raises_response_invalid():
    generator = _generator(lambda r: httpx.Response(200, text="<html>gateway</html>"), [])

    with pytest.raises(BackendResponseInvalid):
        await generator.generate("Lisbon", 2)
