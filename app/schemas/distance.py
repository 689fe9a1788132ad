from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.exceptions import InvalidMode


class TravelMode(str, enum.Enum):
    walking = "walking"
    driving = "driving"

    @classmethod
    def parse(cls, value: object) -> "TravelMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidMode(value) from None


# ── Domain types ──────────────────────────────────────────────────────────────

class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TravelEstimate(BaseModel):
    """What a routing provider returns for one origin → destination leg."""
    distance_meters: int = Field(..., ge=0)
    time_seconds: int = Field(..., ge=0)
    approximate: bool = False


class DistanceRecord(BaseModel):
    """
    One cached (entity A, entity B) row.

    A mode is considered present only when both its distance and its time
    are set; a record may carry walking, driving, or both.
    """
    entity_a_id: int
    entity_b_id: int
    walking_distance_meters: Optional[int] = Field(None, ge=0)
    walking_time_seconds: Optional[int] = Field(None, ge=0)
    driving_distance_meters: Optional[int] = Field(None, ge=0)
    driving_time_seconds: Optional[int] = Field(None, ge=0)
    calculated_at: Optional[datetime] = None

    @classmethod
    def from_estimates(
        cls,
        entity_a_id: int,
        entity_b_id: int,
        estimates: dict[TravelMode, TravelEstimate],
    ) -> "DistanceRecord":
        fields: dict = {}
        for mode, estimate in estimates.items():
            fields[f"{mode.value}_distance_meters"] = estimate.distance_meters
            fields[f"{mode.value}_time_seconds"] = estimate.time_seconds
        return cls(entity_a_id=entity_a_id, entity_b_id=entity_b_id, **fields)

    def estimate(self, mode: TravelMode) -> Optional[TravelEstimate]:
        distance = getattr(self, f"{mode.value}_distance_meters")
        seconds = getattr(self, f"{mode.value}_time_seconds")
        if distance is None or seconds is None:
            return None
        return TravelEstimate(distance_meters=distance, time_seconds=seconds)

    def present_modes(self) -> List[TravelMode]:
        return [m for m in TravelMode if self.estimate(m) is not None]


class DistanceResult(BaseModel):
    entity_a_id: int
    entity_b_id: int
    mode: TravelMode
    distance_meters: int
    time_seconds: int
    cached: bool = False
    # None: the stored row cannot tell exact from straight-line
    approximate: Optional[bool] = False


# ── API schemas ───────────────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DistanceRead(_CamelModel):
    entity_a_id: int
    entity_b_id: int
    mode: TravelMode
    distance_meters: int
    time_seconds: int
    formatted_distance: str
    formatted_time: str
    cached: bool
    approximate: Optional[bool]


class DistanceBatchRequest(_CamelModel):
    entity_b_ids: List[int] = Field(
        ...,
        min_length=1,
        max_length=500,
        validation_alias=AliasChoices("entityBIds", "poiIds", "entity_b_ids"),
        examples=[[12, 40, 41]],
    )


class DistanceBatchResponse(BaseModel):
    count: int
    data: List[DistanceRead]
