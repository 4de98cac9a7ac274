"""
Exception types shared across the tracking core.

None of these are fatal: the session/broadcaster catch them and degrade to
"no live direction data".
"""

from __future__ import annotations

from enum import Enum


class ProximeetError(Exception):
    """Base class for all domain errors raised by this package."""


class GeolocationErrorCode(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"


_USER_MESSAGES = {
    GeolocationErrorCode.PERMISSION_DENIED: "Location access denied by user",
    GeolocationErrorCode.POSITION_UNAVAILABLE: "Location information unavailable",
    GeolocationErrorCode.TIMEOUT: "Location request timed out",
}


class GeolocationError(ProximeetError):
    """A device location read failed; `code` classifies the failure."""

    def __init__(self, code: GeolocationErrorCode, detail: str | None = None):
        self.code = GeolocationErrorCode(code)
        self.detail = detail
        super().__init__(detail or _USER_MESSAGES[self.code])

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.code]


class IpGeolocationError(ProximeetError):
    """The IP-based lookup failed or returned no usable coordinates."""


class ProfileLookupError(ProximeetError):
    """The external profile API failed or returned an unusable payload."""


class MalformedMessageError(ProximeetError):
    """An inbound wire frame could not be parsed or validated."""
