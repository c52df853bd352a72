"""
core/geo.py -- Great-circle distance helpers for the tour geo routes.

Coordinates follow GeoJSON order: [longitude, latitude].
"""

from __future__ import annotations

import math

from core.errors import ValidationError

# Earth radius per unit. Distances come back in the same unit.
EARTH_RADIUS = {"mi": 3963.2, "km": 6378.1}


def parse_latlng(latlng: str) -> tuple[float, float]:
    """Parse "lat,lng" into floats. Raises ValidationError on anything else."""
    parts = [p.strip() for p in latlng.split(",")]
    if len(parts) != 2 or not all(parts):
        raise ValidationError("Please provide latitude and longitude in the format lat,lng.")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise ValidationError("Please provide latitude and longitude in the format lat,lng.") from exc
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValidationError("Latitude must be within [-90, 90] and longitude within [-180, 180].")
    return lat, lng


def radius_for(unit: str) -> float:
    if unit not in EARTH_RADIUS:
        raise ValidationError("Unit must be 'mi' or 'km'.", context={"unit": unit})
    return EARTH_RADIUS[unit]


def distance_between(lat1: float, lng1: float, lat2: float, lng2: float, unit: str = "km") -> float:
    """Haversine distance between two points in the given unit."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * radius_for(unit) * math.asin(min(1.0, math.sqrt(a)))


def point_coordinates(point: dict | None) -> tuple[float, float] | None:
    """Return (lat, lng) from a GeoJSON point dict, or None if it has no usable coordinates."""
    if not point:
        return None
    coords = point.get("coordinates") or []
    if len(coords) != 2:
        return None
    lng, lat = coords
    return float(lat), float(lng)
