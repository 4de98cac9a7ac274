import asyncio

import pytest

from proximeet.client.geolocation import (
    DevicePositionSource,
    FallbackPositionSource,
    GeolocationOptions,
    IpFallbackPositionSource,
    RawReading,
    SimulatedPositionSource,
    build_position_source,
)
from proximeet.config.settings import Settings
from proximeet.core.errors import GeolocationError, GeolocationErrorCode, IpGeolocationError
from proximeet.core.geo import haversine_m
from proximeet.domain.models import PositionSource


def _failing_provider(code):
    async def provider(options):
        raise GeolocationError(code)
        yield  # pragma: no cover

    return provider


def _scripted_provider(*readings):
    async def provider(options):
        for reading in readings:
            yield reading

    return provider


async def _ip_lookup():
    return 25.0478, 121.5170


async def _take(source, n):
    out = []
    agen = source.watch()
    try:
        async for position in agen:
            out.append(position)
            if len(out) >= n:
                break
    finally:
        await agen.aclose()
    return out


@pytest.mark.asyncio
async def test_device_source_yields_device_positions():
    source = DevicePositionSource(_scripted_provider(RawReading(37.0, -122.0, 8.0, 1_000), RawReading(37.1, -122.0, 9.0)))
    positions = await _take(source, 2)

    assert [p.latitude for p in positions] == [37.0, 37.1]
    assert positions[0].captured_at_ms == 1_000
    assert positions[1].captured_at_ms > 1_000
    assert all(p.source is PositionSource.DEVICE for p in positions)


@pytest.mark.asyncio
async def test_device_read_timeout_is_reported():
    async def never(options):
        await asyncio.sleep(10)
        yield RawReading(0, 0, 0)

    source = DevicePositionSource(never, GeolocationOptions(timeout_ms=20))
    with pytest.raises(GeolocationError) as excinfo:
        await _take(source, 1)
    assert excinfo.value.code is GeolocationErrorCode.TIMEOUT


@pytest.mark.asyncio
async def test_watch_restarted_after_timeout_receives_late_reading():
    readings: asyncio.Queue = asyncio.Queue()

    async def provider(options):
        while True:
            yield await readings.get()

    source = DevicePositionSource(provider, GeolocationOptions(timeout_ms=20))
    with pytest.raises(GeolocationError) as excinfo:
        await _take(source, 1)
    assert excinfo.value.code is GeolocationErrorCode.TIMEOUT

    readings.put_nowait(RawReading(37.5, -122.3, 6.0, 2_000))
    positions = await _take(source, 1)

    assert positions[0].latitude == 37.5
    assert positions[0].captured_at_ms == 2_000


@pytest.mark.asyncio
async def test_position_unavailable_falls_back_to_ip():
    chain = FallbackPositionSource(
        DevicePositionSource(_failing_provider(GeolocationErrorCode.POSITION_UNAVAILABLE)),
        IpFallbackPositionSource(_ip_lookup, accuracy_m=10_000, interval_seconds=0.01),
    )
    positions = await _take(chain, 2)

    assert chain.active.name == "ip-fallback"
    assert positions[0].source is PositionSource.IP_FALLBACK
    assert positions[0].accuracy_m == 10_000
    assert (positions[0].latitude, positions[0].longitude) == (25.0478, 121.5170)


@pytest.mark.asyncio
async def test_permission_denied_does_not_fall_back():
    chain = FallbackPositionSource(
        DevicePositionSource(_failing_provider(GeolocationErrorCode.PERMISSION_DENIED)),
        IpFallbackPositionSource(_ip_lookup),
    )
    with pytest.raises(GeolocationError) as excinfo:
        await _take(chain, 1)

    assert excinfo.value.code is GeolocationErrorCode.PERMISSION_DENIED
    assert excinfo.value.user_message == "Location access denied by user"
    assert chain.active.name == "device"


@pytest.mark.asyncio
async def test_ip_lookup_failure_surfaces_as_position_unavailable():
    async def broken():
        raise IpGeolocationError("no coordinates")

    with pytest.raises(GeolocationError) as excinfo:
        await _take(IpFallbackPositionSource(broken), 1)
    assert excinfo.value.code is GeolocationErrorCode.POSITION_UNAVAILABLE


@pytest.mark.asyncio
async def test_simulated_source_is_seeded_and_stays_near_reference():
    a = await _take(SimulatedPositionSource(37.7749, -122.4194, jitter_m=150, interval_seconds=0.001, seed=7), 5)
    b = await _take(SimulatedPositionSource(37.7749, -122.4194, jitter_m=150, interval_seconds=0.001, seed=7), 5)

    assert [(p.latitude, p.longitude) for p in a] == [(p.latitude, p.longitude) for p in b]
    for p in a:
        assert p.source is PositionSource.SIMULATED
        assert haversine_m(37.7749, -122.4194, p.latitude, p.longitude) <= 151


def test_build_position_source_picks_tier_from_settings():
    dev = Settings.model_validate({"app": {"environment": "development"}})
    prod = Settings()

    assert build_position_source(dev, seed=1).name == "simulated"
    assert build_position_source(prod, ip_lookup=_ip_lookup).name == "ip-fallback"

    chained = build_position_source(prod, device_provider=_scripted_provider(), ip_lookup=_ip_lookup)
    assert isinstance(chained, FallbackPositionSource)
    assert chained.name == "device"
