"""LLM client that turns (destination, days) into a structured itinerary.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint (OpenAI by
default; OpenRouter or a local gateway via ``LLM_BASE_URL``) in JSON mode.
One call is exactly one HTTP round trip: no retries, no streaming.
"""
from __future__ import annotations

import json
import time
from textwrap import dedent
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from itinerary_api.integrations.datadog_metrics import track_llm_call
from itinerary_api.integrations.dd_tracing import create_span
from itinerary_api.models.itinerary import Itinerary, parse_itinerary

log = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo-1106"
# Longest diagnostic text kept from a failed backend response
_MAX_DIAGNOSTIC_CHARS = 2000


class GenerationError(Exception):
    """Base class for content generation failures."""


class BackendError(GenerationError):
    """The backend answered with a non-success status, or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendResponseInvalid(GenerationError):
    """A success response without usable itinerary content."""


class ItineraryGenerator(Protocol):
    async def generate(self, destination: str, duration_days: int) -> Any:
        ...


_PROMPT_TEMPLATE = dedent(
    """\
    You are a travel planning assistant. Create a detailed travel itinerary for a {days}-day trip to {destination}.
    Your response MUST be a valid JSON object. Do not include any text, notes, or explanations outside of the JSON object itself.
    The JSON object must follow this exact structure, including all specified fields for each activity:
    {{
      "itinerary": [
        {{
          "day": 1,
          "theme": "Theme of the day",
          "activities": [
            {{"time": "Morning", "description": "Activity description.", "location": "Location name"}},
            {{"time": "Afternoon", "description": "Activity description.", "location": "Location name"}},
            {{"time": "Evening", "description": "Activity description.", "location": "Location name"}}
          ]
        }}
      ]
    }}
    "day" is an integer. Days are numbered from 1 to {days} in order.

    Generate the complete itinerary for all {days} days.
    """
)


def build_itinerary_prompt(destination: str, duration_days: int) -> str:
    """Deterministic prompt: same inputs always give the same text."""
    return _PROMPT_TEMPLATE.format(destination=destination, days=duration_days)


class OpenAIItineraryGenerator:
    """Async chat-completions client producing :class:`Itinerary` documents."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model = model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings) -> "OpenAIItineraryGenerator":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.LLM_BASE_URL,
            model=settings.LLM_MODEL,
            timeout=settings.LLM_TIMEOUT_S,
        )

    def build_payload(self, destination: str, duration_days: int) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": build_itinerary_prompt(destination, duration_days)}],
            "response_format": {"type": "json_object"},
        }

    async def generate(self, destination: str, duration_days: int) -> Itinerary:
        """Generate one itinerary.

        Raises:
            BackendError: non-2xx response (message carries status and body) or
                transport failure.
            BackendResponseInvalid: missing ``choices[0].message.content``, or
                content that is not JSON in the itinerary shape.
        """
        payload = self.build_payload(destination, duration_days)
        start = time.perf_counter()
        status = "error"
        try:
            with create_span("itinerary.llm.generate", resource=self.model, span_type="llm") as span:
                span.set_tag("itinerary.duration_days", duration_days)
                try:
                    resp = await self._client.post("/chat/completions", json=payload)
                except httpx.HTTPError as exc:
                    raise BackendError(f"LLM API request failed: {type(exc).__name__}: {exc}") from exc

                if not resp.is_success:
                    diagnostic = resp.text[:_MAX_DIAGNOSTIC_CHARS]
                    raise BackendError(f"LLM API error: {resp.status_code} {diagnostic}", resp.status_code)

                itinerary = parse_completion(resp)
            status = "success"
            return itinerary
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            track_llm_call(latency_ms, status)
            log.info(
                "llm_generate_finished",
                model=self.model,
                status=status,
                duration_days=duration_days,
                latency_ms=round(latency_ms, 1),
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "OpenAIItineraryGenerator":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()


def parse_completion(resp: httpx.Response) -> Itinerary:
    """Extract and validate the itinerary from a chat-completions response."""
    try:
        envelope = resp.json()
    except ValueError as exc:
        raise BackendResponseInvalid(f"LLM response body is not JSON: {exc}") from exc

    try:
        content = envelope["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str) or not content.strip():
        raise BackendResponseInvalid("Invalid or empty response from LLM.")

    try:
        document = json.loads(content)
    except ValueError as exc:
        raise BackendResponseInvalid(f"Failed to parse the LLM response as JSON: {exc}") from exc

    try:
        return parse_itinerary(document)
    except (ValidationError, TypeError) as exc:
        raise BackendResponseInvalid(f"LLM response is not a valid itinerary: {exc}") from exc
