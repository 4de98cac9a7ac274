"""
IP-based geolocation lookup.

Used only as the second tier of the position chain, when the device reports
"position unavailable" (typical on desktops without GPS). The caller's IP is implicit;
the service answers with an approximate city-level coordinate.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from proximeet.core.errors import IpGeolocationError
from proximeet.core.http import get_json

logger = logging.getLogger(__name__)


def _extract_coordinates(payload: Any) -> tuple[float, float]:
    """Accept the common response shapes (`latitude/longitude`, `lat/lon`)."""
    if not isinstance(payload, dict):
        raise IpGeolocationError("IP geolocation response is not an object")
    if payload.get("error"):
        raise IpGeolocationError(str(payload.get("reason") or payload.get("message") or "lookup refused"))

    for lat_key, lon_key in (("latitude", "longitude"), ("lat", "lon")):
        if lat_key in payload and lon_key in payload:
            try:
                lat = float(payload[lat_key])
                lon = float(payload[lon_key])
            except (TypeError, ValueError) as exc:
                raise IpGeolocationError("IP geolocation returned non-numeric coordinates") from exc
            if not (-90 <= lat <= 90 and -180 <= lon <= 180):
                raise IpGeolocationError("IP geolocation returned out-of-range coordinates")
            return lat, lon
    raise IpGeolocationError("IP geolocation response has no coordinates")


async def lookup_ip_position(url: str, *, timeout_seconds: float = 10) -> tuple[float, float]:
    """Return approximate `(latitude, longitude)` for the caller's public IP.

    Raises:
        IpGeolocationError: on transport failure, non-2xx status or an unusable payload.
    """
    try:
        payload = await get_json(url, timeout_seconds=timeout_seconds)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("IP geolocation lookup failed url=%s err=%s", url, exc)
        raise IpGeolocationError(f"IP geolocation lookup failed: {exc}") from exc
    return _extract_coordinates(payload)
