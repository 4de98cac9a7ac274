from __future__ import annotations
from decimal import ROUND_HALF_UP, Decimal
from math import atan2, cos, degrees, radians, sin, sqrt

"""
Geospatial helpers.

We keep a tiny geometry layer here (distance, bearing, compass labels) so the direction
engine and the broadcaster can do the math without pulling in heavier GIS dependencies.
All functions are pure; callers validate coordinate ranges.
"""

EARTH_RADIUS_M = 6_371_000

COMPASS_POINTS: tuple[str, ...] = (
    "N", "NNE", "NE", "ENE",
    "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW",
    "W", "WNW", "NW", "NNW",
)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute great-circle distance in meters between two coordinates."""
    phi1 = radians(lat1)
    phi2 = radians(lat2)
    dphi = radians(lat2 - lat1)
    dlmb = radians(lon2 - lon1)

    h = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlmb / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(h), sqrt(1 - h))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Forward azimuth from point 1 to point 2, in degrees within [0, 360)."""
    phi1 = radians(lat1)
    phi2 = radians(lat2)
    dlmb = radians(lon2 - lon1)

    y = sin(dlmb) * cos(phi2)
    x = cos(phi1) * sin(phi2) - sin(phi1) * cos(phi2) * cos(dlmb)
    bearing = (degrees(atan2(y, x)) + 360.0) % 360.0
    # -1e-15 + 360 rounds to 360.0 in float arithmetic.
    return 0.0 if bearing >= 360.0 else bearing


def round_half_away(value: float) -> int:
    """Round to the nearest integer, ties away from zero (Python's round() is banker's)."""
    return int(Decimal(repr(float(value))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cardinal_from_bearing(bearing: float) -> str:
    """Map a bearing to its 16-point compass label (N, NNE, ..., NNW)."""
    index = round_half_away(float(bearing) / 22.5) % 16
    return COMPASS_POINTS[index]


def rotation_from_bearing(bearing: float) -> float:
    """Rotation (degrees clockwise from up) for a direction arrow pointing along `bearing`."""
    return float(bearing) % 360.0
