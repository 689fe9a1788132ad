"""
Great-circle math used when no routing provider result is available.
"""
from __future__ import annotations

from math import asin, cos, radians, sin, sqrt

from app.schemas.distance import Coordinate

EARTH_RADIUS_M = 6_371_000.0


def haversine_meters(origin: Coordinate, destination: Coordinate) -> float:
    dlat = radians(destination.latitude - origin.latitude)
    dlng = radians(destination.longitude - origin.longitude)
    a = (
        sin(dlat / 2) ** 2
        + cos(radians(origin.latitude)) * cos(radians(destination.latitude)) * sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * asin(sqrt(min(1.0, a)))


def synthetic_seconds(distance_meters: int, speed_mps: float) -> int:
    """Travel time at a constant assumed speed, rounded to the nearest second."""
    if speed_mps <= 0:
        raise ValueError(f"speed must be positive, got {speed_mps}")
    return round(distance_meters / speed_mps)
