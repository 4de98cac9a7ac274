"""
Profile API client.

The profile service is an external collaborator: given an opaque identity token it returns a
profile with a stable UUID and an optional category (gender) attribute. The tracking core only
needs those two fields, for identity bootstrapping and the capability gate.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from proximeet.config.settings import Settings
from proximeet.core.errors import ProfileLookupError
from proximeet.core.http import get_json
from proximeet.domain.models import Profile

logger = logging.getLogger(__name__)


def parse_profile(payload: Any) -> Profile:
    """Normalize the API payload; the profile may be nested under `user` or `profile`."""
    if not isinstance(payload, dict):
        raise ProfileLookupError("profile response is not an object")
    body = payload
    for key in ("profile", "user"):
        nested = payload.get(key)
        if isinstance(nested, dict) and ("uuid" in nested or "id" in nested):
            body = {**payload, **nested}
            break
    uuid = body.get("uuid") or body.get("id")
    if not uuid:
        raise ProfileLookupError("profile response has no uuid")
    try:
        return Profile(uuid=str(uuid), gender=body.get("gender"), name=body.get("name"))
    except ValidationError as exc:
        raise ProfileLookupError(f"invalid profile payload: {exc.error_count()} error(s)") from exc


class ProfileClient:
    """Fetches profiles from the configured profile API."""

    def __init__(self, settings: Settings):
        self._base_url = settings.ingestion.profile_api_url.rstrip("/")
        self._timeout = settings.app.http_timeout_seconds

    async def _get(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        try:
            return await get_json(url, timeout_seconds=self._timeout)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("profile lookup failed url=%s err=%s", url, exc)
            raise ProfileLookupError(f"profile lookup failed: {exc}") from exc

    async def get_profile(self, profile_id: str) -> Profile:
        return parse_profile(await self._get(f"/profile/{quote(profile_id, safe='')}"))

    async def get_profile_by_world_id(self, world_id: str) -> Profile:
        return parse_profile(await self._get(f"/id-by-worldid/{quote(world_id, safe='')}"))
