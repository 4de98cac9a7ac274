"""
Async JSON-over-HTTP for the external collaborators (profile API, IP geolocation).

Callers either pass a long-lived `httpx.AsyncClient` or let `get_json` open a short-lived one.
Non-2xx responses raise; callers translate to their own domain errors.
"""

from __future__ import annotations

from typing import Any

import httpx

USER_AGENT = "proximeet/0.1.0"


async def get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    timeout_seconds: float = 10,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """GET `url` and decode the JSON body.

    Raises:
        httpx.HTTPError: transport failure or non-2xx status.
        ValueError: body is not JSON.
    """
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    if client is not None:
        resp = await client.get(url, params=params, headers=headers, timeout=timeout_seconds)
        resp.raise_for_status()
        return resp.json()

    async with httpx.AsyncClient(timeout=timeout_seconds) as owned:
        resp = await owned.get(url, params=params, headers=headers)
        resp.raise_for_status()
        return resp.json()
