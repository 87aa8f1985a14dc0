"""GPS distance checks for savings deposits and meeting attendance."""

import math
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "Coordinates",
    "LocationCheck",
    "calculate_distance",
    "validate_location",
    "SAVINGS_RADIUS_M",
    "MEETING_RADIUS_M",
]

EARTH_RADIUS_KM = 6371.0
SAVINGS_RADIUS_M = 100.0
MEETING_RADIUS_M = 50.0


@dataclass
class Coordinates:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


@dataclass
class LocationCheck:
    valid: bool
    message: str
    distance: Optional[float] = None  # metres


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance between two points, in metres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c * 1000


def validate_location(
    current: Coordinates,
    required: Optional[Coordinates] = None,
    max_distance_m: float = SAVINGS_RADIUS_M,
) -> LocationCheck:
    """Check that current lies within max_distance_m of required.

    Without a required location any obtained position is accepted.
    """
    if required is None:
        return LocationCheck(valid=True, message="Location obtained")

    distance = calculate_distance(
        current.latitude, current.longitude, required.latitude, required.longitude
    )
    if distance <= max_distance_m:
        return LocationCheck(valid=True, message="Location within range", distance=distance)
    return LocationCheck(
        valid=False,
        message=f"Location out of range. Distance: {distance:.2f}m",
        distance=distance,
    )
