import json

import proximeet.cli as cli
from proximeet.cli import main
from proximeet.core.errors import ProfileLookupError
from proximeet.core.time import age_ms


def test_direction_command_prints_distance_and_compass(capsys):
    assert main(["direction", "37.7749", "-122.4194", "37.7849", "-122.4194"]) == 0
    out = capsys.readouterr().out.strip()
    assert out.endswith("N (0 deg)")
    assert out.startswith("1.1km")


def test_direction_command_json(capsys):
    assert main(["direction", "0", "0", "0", "1", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["cardinal"] == "E"
    assert data["bearing_deg"] == 90
    assert data["distance_m"] == 111195


def test_age_ms_never_negative():
    assert age_ms(1_000, now=4_000) == 3_000
    assert age_ms(5_000, now=4_000) == 0


class _FailingProfileClient:
    def __init__(self, settings):
        pass

    async def get_profile(self, profile_id):
        raise ProfileLookupError("profile lookup failed: 404")


def test_track_stops_when_profile_lookup_fails(monkeypatch, capsys):
    monkeypatch.setattr(cli, "ProfileClient", _FailingProfileClient)
    assert main(["track", "--profile-id", "missing"]) == 2
    assert "profile lookup failed" in capsys.readouterr().out
