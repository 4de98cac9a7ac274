from proximeet.domain.models import Position, PositionSource
from proximeet.tracking.store import PositionStore


def _pos(lat: float, lon: float, ts: int) -> Position:
    return Position(latitude=lat, longitude=lon, accuracy_m=5, captured_at_ms=ts, source=PositionSource.DEVICE)


def test_put_then_get_returns_latest_write():
    store = PositionStore()
    first = _pos(1.0, 1.0, 1_000)
    second = _pos(2.0, 2.0, 500)

    store.put("x", first)
    assert store.get("x") == first

    # Last write wins regardless of timestamp ordering.
    assert store.put("x", second) is True
    assert store.get("x") == second


def test_put_for_one_identity_never_affects_another():
    store = PositionStore()
    store.put("x", _pos(1.0, 1.0, 1_000))
    assert store.get("y") is None

    store.put("y", _pos(3.0, 3.0, 2_000))
    assert store.get("x") == _pos(1.0, 1.0, 1_000)
    assert len(store) == 2
    assert "y" in store


def test_evict_stale_removes_exactly_the_older_entries():
    store = PositionStore()
    store.put("old", _pos(0, 0, 10_000))
    store.put("edge", _pos(0, 0, 40_000))
    store.put("fresh", _pos(0, 0, 95_000))

    evicted = store.evict_stale(now_ms=100_000, threshold_ms=60_000)

    assert evicted == ["old"]
    assert store.get("old") is None
    assert store.get("edge") is not None
    assert store.get("fresh") is not None


def test_monotonic_store_rejects_out_of_order_positions():
    store = PositionStore(monotonic=True)
    store.put("x", _pos(1.0, 1.0, 2_000))

    assert store.put("x", _pos(9.0, 9.0, 1_000)) is False
    assert store.get("x").latitude == 1.0

    assert store.put("x", _pos(2.0, 2.0, 3_000)) is True
    assert store.get("x").latitude == 2.0


def test_snapshot_is_a_copy():
    store = PositionStore()
    store.put("x", _pos(1.0, 1.0, 1_000))
    snap = store.snapshot()
    store.remove("x")
    assert "x" in snap
    assert "x" not in store
