"""
Position acquisition strategies.

A `PositionSource` yields `Position` objects continuously via `watch()`. Three tiers exist:

- `DevicePositionSource`: continuous device-native location from an injected provider
- `IpFallbackPositionSource`: coarse IP-based position (~10 km accuracy)
- `SimulatedPositionSource`: a seeded random walk around a reference point (dev/test)

`FallbackPositionSource` chains device -> IP when (and only when) the device reports
"position unavailable". `build_position_source()` resolves the strategy once from settings;
downstream code never branches on the tier, `Position.source` is informational only.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Protocol

from proximeet.config.settings import Settings
from proximeet.core.errors import GeolocationError, GeolocationErrorCode, IpGeolocationError
from proximeet.core.time import now_ms
from proximeet.domain.models import Position, PositionSource as SourceTag
from proximeet.ingestion.ip_geolocation import lookup_ip_position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeolocationOptions:
    high_accuracy: bool = True
    timeout_ms: int = 10_000
    maximum_age_ms: int = 5_000


@dataclass(frozen=True)
class RawReading:
    """One reading as reported by the platform location API."""

    latitude: float
    longitude: float
    accuracy: float
    timestamp_ms: int | None = None


DeviceProvider = Callable[[GeolocationOptions], AsyncIterator[RawReading]]
IpLookup = Callable[[], Awaitable[tuple[float, float]]]


class PositionSource(Protocol):
    name: str

    def watch(self) -> AsyncIterator[Position]: ...


class DevicePositionSource:
    """Wraps a platform provider; each read must arrive within `options.timeout_ms`."""

    name = "device"

    def __init__(self, provider: DeviceProvider, options: GeolocationOptions | None = None):
        self._provider = provider
        self._options = options or GeolocationOptions()

    async def watch(self) -> AsyncIterator[Position]:
        readings = self._provider(self._options)
        timeout_s = self._options.timeout_ms / 1000
        try:
            while True:
                try:
                    reading = await asyncio.wait_for(readings.__anext__(), timeout=timeout_s)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as exc:
                    raise GeolocationError(GeolocationErrorCode.TIMEOUT) from exc
                yield Position(
                    latitude=reading.latitude,
                    longitude=reading.longitude,
                    accuracy_m=max(0.0, float(reading.accuracy)),
                    captured_at_ms=reading.timestamp_ms if reading.timestamp_ms is not None else now_ms(),
                    source=SourceTag.DEVICE,
                )
        finally:
            aclose = getattr(readings, "aclose", None)
            if aclose is not None:
                await aclose()


class IpFallbackPositionSource:
    """Looks the position up once, then re-emits that fix every `interval_seconds`."""

    name = "ip-fallback"

    def __init__(self, lookup: IpLookup, *, accuracy_m: float = 10_000.0, interval_seconds: float = 30.0):
        self._lookup = lookup
        self._accuracy_m = float(accuracy_m)
        self._interval = float(interval_seconds)

    async def watch(self) -> AsyncIterator[Position]:
        try:
            lat, lon = await self._lookup()
        except IpGeolocationError as exc:
            raise GeolocationError(GeolocationErrorCode.POSITION_UNAVAILABLE, str(exc)) from exc
        logger.info("using IP-based location fallback")
        while True:
            yield Position(
                latitude=lat,
                longitude=lon,
                accuracy_m=self._accuracy_m,
                captured_at_ms=now_ms(),
                source=SourceTag.IP_FALLBACK,
            )
            await asyncio.sleep(self._interval)


class SimulatedPositionSource:
    """Random walk within `jitter_m` of a reference point; seeded for reproducible runs."""

    name = "simulated"

    def __init__(
        self,
        latitude: float,
        longitude: float,
        *,
        jitter_m: float = 150.0,
        interval_seconds: float = 2.0,
        seed: int | None = None,
    ):
        self._lat0 = float(latitude)
        self._lon0 = float(longitude)
        self._jitter_m = float(jitter_m)
        self._interval = float(interval_seconds)
        self._rng = random.Random(seed)

    def _offset(self) -> tuple[float, float]:
        distance = self._rng.uniform(0, self._jitter_m)
        angle = self._rng.uniform(0, 2 * math.pi)
        dlat = distance * math.cos(angle) / 111_320.0
        dlon = distance * math.sin(angle) / (111_320.0 * max(0.01, math.cos(math.radians(self._lat0))))
        return dlat, dlon

    async def watch(self) -> AsyncIterator[Position]:
        while True:
            dlat, dlon = self._offset()
            yield Position(
                latitude=max(-90.0, min(90.0, self._lat0 + dlat)),
                longitude=max(-180.0, min(180.0, self._lon0 + dlon)),
                accuracy_m=10.0,
                captured_at_ms=now_ms(),
                source=SourceTag.SIMULATED,
            )
            await asyncio.sleep(self._interval)


class FallbackPositionSource:
    """Use `primary` until it reports position-unavailable, then switch to `fallback`.

    Permission-denied and timeout errors propagate: they need user action, not a fallback.
    """

    def __init__(self, primary: PositionSource, fallback: PositionSource):
        self._primary = primary
        self._fallback = fallback
        self.name = primary.name
        self.active: PositionSource = primary

    async def watch(self) -> AsyncIterator[Position]:
        self.active = self._primary
        try:
            async for position in self._primary.watch():
                yield position
            return
        except GeolocationError as exc:
            if exc.code is not GeolocationErrorCode.POSITION_UNAVAILABLE:
                raise
            logger.warning("device location unavailable, falling back to %s", self._fallback.name)
        self.active = self._fallback
        self.name = self._fallback.name
        async for position in self._fallback.watch():
            yield position


def build_position_source(
    settings: Settings,
    *,
    device_provider: DeviceProvider | None = None,
    ip_lookup: IpLookup | None = None,
    seed: int | None = None,
) -> PositionSource:
    """Resolve the position strategy once for a session."""
    geo = settings.client.geolocation
    if settings.is_dev():
        ref = settings.tracking.reference_point
        return SimulatedPositionSource(
            ref.latitude,
            ref.longitude,
            jitter_m=geo.simulated_jitter_m,
            interval_seconds=geo.simulated_interval_seconds,
            seed=seed,
        )

    if ip_lookup is None:
        url = settings.ingestion.ip_geolocation_url
        timeout = settings.app.http_timeout_seconds

        async def _lookup() -> tuple[float, float]:
            return await lookup_ip_position(url, timeout_seconds=timeout)

        ip_lookup = _lookup

    ip_source = IpFallbackPositionSource(
        ip_lookup,
        accuracy_m=geo.ip_fallback_accuracy_m,
        interval_seconds=geo.ip_fallback_interval_seconds,
    )
    if device_provider is None:
        return ip_source

    device = DevicePositionSource(
        device_provider,
        GeolocationOptions(
            high_accuracy=geo.high_accuracy,
            timeout_ms=geo.timeout_ms,
            maximum_age_ms=geo.maximum_age_ms,
        ),
    )
    return FallbackPositionSource(device, ip_source)
