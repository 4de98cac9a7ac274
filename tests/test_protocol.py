import json

import pytest

from proximeet.core.errors import MalformedMessageError
from proximeet.domain.models import Position, PositionSource, TargetSelection
from proximeet.realtime.protocol import (
    GpsUpdateMessage,
    PingMessage,
    SelectedUsersMessage,
    UnknownMessage,
    decode_message,
    encode_message,
)


def test_decode_gps_update_uses_camel_case_identity():
    frame = {
        "type": "gps_update",
        "userId": "bob",
        "data": {"latitude": 37.78, "longitude": -122.41, "accuracy": 12, "timestamp": 1_700_000_000_000},
    }
    msg = decode_message(json.dumps(frame))

    assert isinstance(msg, GpsUpdateMessage)
    assert msg.user_id == "bob"
    pos = msg.to_position()
    assert pos.captured_at_ms == 1_700_000_000_000
    assert pos.accuracy_m == 12
    assert pos.source is PositionSource.DEVICE


def test_encode_gps_update_omits_missing_source():
    msg = GpsUpdateMessage(user_id="bob", data={"latitude": 1, "longitude": 2, "accuracy": 3, "timestamp": 4})
    payload = json.loads(encode_message(msg))

    assert payload["type"] == "gps_update"
    assert payload["userId"] == "bob"
    assert "source" not in payload["data"]


def test_gps_update_from_position_carries_source_tag():
    pos = Position(latitude=1, longitude=2, accuracy_m=10_000, captured_at_ms=5, source=PositionSource.IP_FALLBACK)
    payload = json.loads(encode_message(GpsUpdateMessage.from_position("me", pos)))
    assert payload["data"]["source"] == "ip-fallback"
    assert payload["data"]["accuracy"] == 10_000


def test_selected_users_replaces_wholesale_and_accepts_legacy_slot_names():
    msg = decode_message({"type": "selected_users", "data": {"male": "bob", "female": "", "selectedAt": 42}})
    assert isinstance(msg, SelectedUsersMessage)

    selection = msg.to_selection("me")
    assert selection.self_id == "me"
    assert selection.slots == {"slotA": "bob", "slotB": None}
    assert selection.selected_at_ms == 42


def test_selected_users_round_trip_from_selection():
    selection = TargetSelection(self_id="me", slots={"slotA": "bob", "slotB": "carol"}, selected_at_ms=7)
    decoded = decode_message(encode_message(SelectedUsersMessage.from_selection(selection)))
    assert decoded.to_selection("me") == selection


def test_ping_decodes():
    assert isinstance(decode_message('{"type":"ping"}'), PingMessage)


def test_unknown_type_is_not_an_error():
    msg = decode_message('{"type":"chat","text":"hi"}')
    assert isinstance(msg, UnknownMessage)
    assert msg.type == "chat"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        '{"type":"gps_update","userId":"bob"}',
        '{"type":"gps_update","userId":"bob","data":{"latitude":123,"longitude":0,"timestamp":1}}',
        '{"type":"selected_users","data":{"slotA":"bob","selectedAt":"2024-01-01T00:00:00Z"}}',
        '{"type":"selected_users","data":{"slotA":"bob","selectedAt":true}}',
        '{"type":"selected_users","data":{"slotA":["bob"],"selectedAt":1}}',
        '{"type":"selected_users","data":{"slotB":42,"selectedAt":1}}',
    ],
)
def test_malformed_frames_raise(raw):
    with pytest.raises(MalformedMessageError):
        decode_message(raw)


def test_selected_users_empty_slot_values_become_none():
    msg = decode_message('{"type":"selected_users","data":{"slotA":"","slotB":null,"selectedAt":null}}')
    selection = msg.to_selection("me")
    assert selection.slots == {"slotA": None, "slotB": None}
    assert selection.selected_at_ms == 0
