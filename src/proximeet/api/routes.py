"""
API routes.

Endpoints:
- WS   `/ws`: the tracking channel (`gps_update`, `selected_users`, `ping`/`pong` frames).
- POST `/api/selections`: the external matcher pushes a user's target selection.
- GET  `/api/selections/{user_id}`: current selection for a user.
- GET  `/api/targets/{user_id}`: selected targets with their last known positions.
- GET  `/api/directions/{user_id}`: server-side direction bundle for a user.
- GET  `/api/health`: liveness plus connection/position counts.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from proximeet.core.time import age_ms, now_ms
from proximeet.domain.models import DirectionInfo, Position, TargetSelection
from proximeet.server.broadcaster import ProximityBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter()


def _broadcaster(app) -> ProximityBroadcaster:
    return app.state.broadcaster


class SelectionRequest(BaseModel):
    """Matcher payload; `male`/`female` are accepted for the two slots for older matchers."""

    model_config = ConfigDict(populate_by_name=True)

    self_id: str = Field(..., min_length=1, validation_alias=AliasChoices("selfId", "self_id", "userId"))
    slot_a: Optional[str] = Field(default=None, validation_alias=AliasChoices("slotA", "slot_a", "male"))
    slot_b: Optional[str] = Field(default=None, validation_alias=AliasChoices("slotB", "slot_b", "female"))
    selected_at: Optional[int] = Field(default=None, validation_alias=AliasChoices("selectedAt", "selected_at"))

    def to_selection(self) -> TargetSelection:
        return TargetSelection(
            self_id=self.self_id,
            slots={"slotA": self.slot_a, "slotB": self.slot_b},
            selected_at_ms=self.selected_at if self.selected_at is not None else now_ms(),
        )


class SelectionResponse(BaseModel):
    selection: TargetSelection
    replaced: bool = False


class TargetView(BaseModel):
    target_id: str
    position: Position | None = None
    age_ms: int | None = None


@router.get("/api/health")
def get_health(request: Request) -> dict:
    broadcaster = _broadcaster(request.app)
    return {
        "ok": True,
        "connections": broadcaster.connection_count(),
        "positions": len(broadcaster.store),
        "stats": broadcaster.stats.as_dict(),
    }


@router.post("/api/selections", response_model=SelectionResponse)
async def post_selection(payload: SelectionRequest, request: Request) -> SelectionResponse:
    """Store a selection (wholesale replace) and relay it to the user's open connections."""
    selection = payload.to_selection()
    previous = await _broadcaster(request.app).apply_selection(selection)
    return SelectionResponse(selection=selection, replaced=previous is not None)


@router.get("/api/selections/{user_id}", response_model=TargetSelection)
def get_selection(user_id: str, request: Request) -> TargetSelection:
    selection = _broadcaster(request.app).targets.get(user_id)
    if selection is None:
        raise HTTPException(status_code=404, detail=f"No selection for user '{user_id}'")
    return selection


@router.get("/api/targets/{user_id}")
def get_targets(user_id: str, request: Request) -> dict[str, TargetView]:
    targets = _broadcaster(request.app).target_positions(user_id)
    now = now_ms()
    return {
        label: TargetView(
            target_id=target_id,
            position=pos,
            age_ms=age_ms(pos.captured_at_ms, now=now) if pos is not None else None,
        )
        for label, (target_id, pos) in targets.items()
    }


@router.get("/api/directions/{user_id}")
def get_directions(user_id: str, request: Request) -> dict[str, DirectionInfo | None]:
    broadcaster = _broadcaster(request.app)
    if broadcaster.store.get(user_id) is None:
        raise HTTPException(status_code=404, detail=f"No known position for user '{user_id}'")
    return broadcaster.directions_for(user_id)


@router.websocket("/ws")
async def tracking_socket(websocket: WebSocket, user_id: Optional[str] = Query(default=None, alias="userId")) -> None:
    """One task per connection; the identity binds from `?userId=` or the first `gps_update`."""
    await websocket.accept()
    broadcaster = _broadcaster(websocket.app)
    connection_id = uuid.uuid4().hex
    await broadcaster.register(connection_id, websocket.send_text, identity=user_id or None)
    try:
        while True:
            text = await websocket.receive_text()
            await broadcaster.handle_frame(connection_id, text)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unregister(connection_id)
