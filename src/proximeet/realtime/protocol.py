"""
Wire protocol for the tracking channel.

Every frame is a JSON object with a `type` discriminator:

- `gps_update`      {userId, data: {latitude, longitude, accuracy, timestamp[, source]}}
- `selected_users`  {data: {slotA, slotB, selectedAt}}
- `ping` / `pong`   {}

`decode_message()` is the single parsing entrypoint for both the client session and the
server endpoint. Unknown types decode to `UnknownMessage` (callers log and ignore them);
anything that is not valid JSON or fails validation raises `MalformedMessageError`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from proximeet.core.errors import MalformedMessageError
from proximeet.domain.models import Position, PositionSource, TargetSelection

# Slot labels used by older clients (the selection was modelled per gender).
LEGACY_SLOT_ALIASES = {"male": "slotA", "female": "slotB"}


class GpsData(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(0.0, ge=0)
    timestamp: int
    source: Optional[PositionSource] = None


class GpsUpdateMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["gps_update"] = "gps_update"
    user_id: str = Field(..., alias="userId", min_length=1)
    data: GpsData

    @classmethod
    def from_position(cls, user_id: str, position: Position) -> "GpsUpdateMessage":
        return cls(
            user_id=user_id,
            data=GpsData(
                latitude=position.latitude,
                longitude=position.longitude,
                accuracy=position.accuracy_m,
                timestamp=position.captured_at_ms,
                source=position.source,
            ),
        )

    def to_position(self) -> Position:
        return Position(
            latitude=self.data.latitude,
            longitude=self.data.longitude,
            accuracy_m=self.data.accuracy,
            captured_at_ms=self.data.timestamp,
            source=self.data.source or PositionSource.DEVICE,
        )


class SelectedUsersMessage(BaseModel):
    """`data` maps slot labels to a user id (or null), plus an integer `selectedAt`."""

    type: Literal["selected_users"] = "selected_users"
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data")
    @classmethod
    def _check_payload(cls, data: dict[str, Any]) -> dict[str, Any]:
        for key, value in data.items():
            if value is None:
                continue
            if key == "selectedAt":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValueError("selectedAt must be integer epoch milliseconds")
            elif not isinstance(value, str):
                raise ValueError(f"slot {key!r} must be a user id string or null")
        return data

    @classmethod
    def from_selection(cls, selection: TargetSelection) -> "SelectedUsersMessage":
        return cls(data={**selection.slots, "selectedAt": selection.selected_at_ms})

    def to_selection(self, self_id: str) -> TargetSelection:
        """Rebuild the full selection; the payload replaces any previous one wholesale."""
        slots: dict[str, Optional[str]] = {}
        selected_at = 0
        for key, value in self.data.items():
            if key == "selectedAt":
                selected_at = value or 0
                continue
            label = LEGACY_SLOT_ALIASES.get(key, key)
            slots[label] = value or None
        return TargetSelection(self_id=self_id, slots=slots, selected_at_ms=selected_at)


class PingMessage(BaseModel):
    type: Literal["ping"] = "ping"


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"


@dataclass(frozen=True)
class UnknownMessage:
    type: str | None
    raw: dict[str, Any] = field(default_factory=dict)


Message = Union[GpsUpdateMessage, SelectedUsersMessage, PingMessage, PongMessage]

_MESSAGE_TYPES: dict[str, type[BaseModel]] = {
    "gps_update": GpsUpdateMessage,
    "selected_users": SelectedUsersMessage,
    "ping": PingMessage,
    "pong": PongMessage,
}


def decode_message(raw: str | bytes | dict[str, Any]) -> Message | UnknownMessage:
    """Parse one inbound frame.

    Raises:
        MalformedMessageError: invalid JSON, a non-object root, or a payload that fails validation.
    """
    if isinstance(raw, dict):
        payload = raw
    else:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise MalformedMessageError(f"invalid JSON frame: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError("frame root must be a JSON object")

    message_type = payload.get("type")
    model = _MESSAGE_TYPES.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        return UnknownMessage(type=message_type if isinstance(message_type, str) else None, raw=payload)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedMessageError(f"invalid {message_type} payload: {exc.error_count()} error(s)") from exc


def encode_message(message: Message) -> str:
    """Serialize a message to its compact JSON wire form (camelCase keys)."""
    payload = message.model_dump(mode="json", by_alias=True)
    if isinstance(message, GpsUpdateMessage) and payload["data"].get("source") is None:
        payload["data"].pop("source", None)
    return json.dumps(payload, separators=(",", ":"))
