"""Itinerary document model - the structured output expected from the LLM.

Shape (stored verbatim under the job's ``itinerary`` field):

    {"itinerary": [{"day": 1, "theme": "...",
                    "activities": [{"time": "...", "description": "...", "location": "..."}]}]}
"""
from __future__ import annotations

from typing import Any, List, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class Activity(BaseModel):
    # Keys beyond the required ones are kept as generated.
    model_config = ConfigDict(extra="allow")

    time: StrictStr
    description: StrictStr
    location: StrictStr


class DayPlan(BaseModel):
    model_config = ConfigDict(extra="allow")

    day: StrictInt = Field(..., ge=1, description="1-based day number")
    theme: StrictStr
    activities: List[Activity]


class Itinerary(BaseModel):
    model_config = ConfigDict(extra="allow")

    itinerary: List[DayPlan] = Field(..., min_length=1)

    def to_document(self) -> dict:
        return self.model_dump(mode="json")


def parse_itinerary(value: Union[Itinerary, Mapping[str, Any]]) -> Itinerary:
    """Validate ``value`` as a well-formed itinerary.

    Raises ``pydantic.ValidationError`` (or ``TypeError`` for non-mappings).
    """
    if isinstance(value, Itinerary):
        value = value.model_dump()
    if not isinstance(value, Mapping):
        raise TypeError(f"expected a JSON object, got {type(value).__name__}")
    return Itinerary.model_validate(dict(value))
