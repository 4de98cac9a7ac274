"""
Direction engine: combine the viewer's position with each selected target's last known
position into display-ready `DirectionInfo` bundles.

Nothing here is cached; callers recompute on every position tick or selection change.
A slot without a target, or whose target has not reported yet, maps to `None`.
"""

from __future__ import annotations

from proximeet.core.geo import (
    cardinal_from_bearing,
    haversine_m,
    initial_bearing_deg,
    rotation_from_bearing,
    round_half_away,
)
from proximeet.domain.models import DirectionInfo, Position, TargetSelection
from proximeet.tracking.store import PositionStore


def direction_to(target_id: str, origin: Position, target: Position) -> DirectionInfo:
    distance = haversine_m(origin.latitude, origin.longitude, target.latitude, target.longitude)
    bearing = initial_bearing_deg(origin.latitude, origin.longitude, target.latitude, target.longitude)
    bearing_int = round_half_away(bearing) % 360
    return DirectionInfo(
        target_id=target_id,
        distance_m=round_half_away(distance),
        bearing_deg=bearing_int,
        cardinal=cardinal_from_bearing(bearing),
        rotation_deg=round_half_away(rotation_from_bearing(bearing)) % 360,
    )


def compute_directions(
    self_position: Position | None,
    selection: TargetSelection | None,
    store: PositionStore,
    *,
    slot_labels: list[str] | None = None,
) -> dict[str, DirectionInfo | None]:
    """Return slot label -> direction to that slot's target (or None)."""
    labels = list(slot_labels or [])
    if selection is not None:
        labels.extend(label for label in selection.slots if label not in labels)
    result: dict[str, DirectionInfo | None] = {label: None for label in labels}
    if self_position is None or selection is None:
        return result

    for label, target_id in selection.slots.items():
        if not target_id:
            continue
        target_position = store.get(target_id)
        if target_position is None:
            continue
        result[label] = direction_to(target_id, self_position, target_position)
    return result


def format_distance(distance_m: int) -> str:
    """Short UI text: metres below 1 km, otherwise kilometres with one decimal."""
    if distance_m < 1000:
        return f"{distance_m}m"
    return f"{distance_m / 1000:.1f}km"
