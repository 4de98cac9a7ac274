from proximeet.domain.models import Position, TargetSelection
from proximeet.tracking.direction import compute_directions, format_distance
from proximeet.tracking.store import PositionStore

SELF = Position(latitude=37.7749, longitude=-122.4194, accuracy_m=5, captured_at_ms=1_000)
TARGET = Position(latitude=37.7849, longitude=-122.4194, accuracy_m=5, captured_at_ms=1_000)


def test_slot_is_none_until_target_reports_then_populated():
    store = PositionStore()
    selection = TargetSelection(self_id="me", slots={"slotA": "bob", "slotB": None}, selected_at_ms=1)

    before = compute_directions(SELF, selection, store)
    assert before == {"slotA": None, "slotB": None}

    store.put("bob", TARGET)
    after = compute_directions(SELF, selection, store)

    info = after["slotA"]
    assert info is not None
    assert info.target_id == "bob"
    assert after["slotB"] is None


def test_due_north_scenario():
    store = PositionStore()
    store.put("bob", TARGET)
    selection = TargetSelection(self_id="me", slots={"slotA": "bob"})

    info = compute_directions(SELF, selection, store)["slotA"]

    assert abs(info.distance_m - 1113) <= 5
    assert info.bearing_deg in (0, 1, 359)
    assert info.cardinal == "N"
    assert info.rotation_deg == info.bearing_deg


def test_missing_self_position_or_selection_yields_empty_slots():
    store = PositionStore()
    store.put("bob", TARGET)
    selection = TargetSelection(self_id="me", slots={"slotA": "bob"})

    assert compute_directions(None, selection, store) == {"slotA": None}
    assert compute_directions(SELF, None, store, slot_labels=["slotA", "slotB"]) == {"slotA": None, "slotB": None}


def test_two_slots_are_computed_independently():
    store = PositionStore()
    store.put("bob", TARGET)
    store.put("carol", Position(latitude=37.7749, longitude=-122.4080, captured_at_ms=1))
    selection = TargetSelection(self_id="me", slots={"slotA": "bob", "slotB": "carol"})

    result = compute_directions(SELF, selection, store)

    assert result["slotA"].cardinal == "N"
    assert result["slotB"].cardinal == "E"
    assert 990 <= result["slotB"].distance_m <= 1010


def test_format_distance():
    assert format_distance(850) == "850m"
    assert format_distance(1000) == "1.0km"
    assert format_distance(1234) == "1.2km"
