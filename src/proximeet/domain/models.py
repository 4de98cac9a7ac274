"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- positions as captured on a device and held in the shared store (`Position`)
- who a user is currently tracking (`TargetSelection`)
- display-ready direction output (`DirectionInfo`, `TrackingStatus`)
- the external profile payload consumed by the capability gate (`Profile`)

Wire framing lives in `proximeet.realtime.protocol`; these models never carry
camelCase wire names.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PositionSource(str, Enum):
    DEVICE = "device"
    IP_FALLBACK = "ip-fallback"
    SIMULATED = "simulated"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class Position(BaseModel):
    """One geographic fix. Replaced wholesale, never patched."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_m: float = Field(0.0, ge=0)
    captured_at_ms: int
    source: PositionSource = PositionSource.DEVICE


class TargetSelection(BaseModel):
    """Counterpart identities a user is tracking, keyed by slot label."""

    model_config = ConfigDict(frozen=True)

    self_id: str = Field(..., min_length=1)
    slots: dict[str, Optional[str]] = Field(default_factory=dict)
    selected_at_ms: int = 0

    @field_validator("slots")
    @classmethod
    def _blank_to_none(cls, slots: dict[str, Optional[str]]) -> dict[str, Optional[str]]:
        return {label: (target.strip() or None) if target else None for label, target in slots.items()}

    def targets(self) -> list[str]:
        """Distinct non-null target identities in slot order."""
        seen: list[str] = []
        for target in self.slots.values():
            if target and target not in seen:
                seen.append(target)
        return seen

    def includes(self, identity: str) -> bool:
        return identity in self.slots.values()


class DirectionInfo(BaseModel):
    """Where one target is relative to the viewer (derived, never stored)."""

    target_id: str
    distance_m: int = Field(..., ge=0)
    bearing_deg: int = Field(..., ge=0, lt=360)
    cardinal: str
    rotation_deg: int = Field(..., ge=0, lt=360)


class Profile(BaseModel):
    """External profile as returned by the profile API (only the fields the core reads)."""

    uuid: str
    gender: str | None = None
    name: str | None = None

    @field_validator("gender")
    @classmethod
    def _empty_gender_is_missing(cls, gender: str | None) -> str | None:
        if gender is None:
            return None
        gender = gender.strip().lower()
        return gender or None


class TrackingStatus(BaseModel):
    """Snapshot of a client session pushed to UI listeners."""

    state: ConnectionState
    user_id: str | None = None
    is_tracking: bool = False
    blocked_reason: str | None = None
    error: str | None = None
    position: Position | None = None
    selection: TargetSelection | None = None
    directions: dict[str, DirectionInfo | None] = Field(default_factory=dict)
