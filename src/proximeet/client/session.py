"""
Client connection session.

One `ConnectionSession` per active client. It owns the transport connection, the geolocation
watch, the reconnect timer and the client-local view of other users' positions. Every
stimulus (transport opened/closed/failed, inbound frame, new fix, geolocation failure,
reconnect timer) is turned into a `SessionEvent` and fed through `handle_event()`, the single
ingestion point of the state machine:

    disconnected -> connecting -> connected
    connected -> disconnected              (clean close)
    connected -> error -> disconnected     (abnormal close)
    disconnected -> connecting             (start_tracking or reconnect timer)

Outbound position updates are best-effort: they are sent only when the transport is open,
an identity is known and the capability gate passes; otherwise they are dropped, never queued.
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import suppress
from dataclasses import dataclass
from typing import Callable, Union

from proximeet.client.geolocation import PositionSource
from proximeet.client.transport import Connection, ConnectionLost, Transport, TransportError
from proximeet.config.settings import ReconnectSettings, Settings
from proximeet.core.env import resolve_state_path
from proximeet.core.errors import GeolocationError, GeolocationErrorCode, MalformedMessageError
from proximeet.core.time import now_ms
from proximeet.domain.models import (
    ConnectionState,
    DirectionInfo,
    Position,
    Profile,
    TargetSelection,
    TrackingStatus,
)
from proximeet.realtime.protocol import (
    GpsUpdateMessage,
    PingMessage,
    PongMessage,
    SelectedUsersMessage,
    UnknownMessage,
    decode_message,
    encode_message,
)
from proximeet.tracking.direction import compute_directions
from proximeet.tracking.gate import GateDecision, can_track
from proximeet.tracking.identity import resolve_user_id
from proximeet.tracking.store import PositionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportOpened:
    connection: Connection


@dataclass(frozen=True)
class TransportClosed:
    clean: bool = True
    reason: str = ""


@dataclass(frozen=True)
class TransportFailed:
    reason: str = ""


@dataclass(frozen=True)
class MessageReceived:
    text: str


@dataclass(frozen=True)
class PositionAcquired:
    position: Position


@dataclass(frozen=True)
class GeolocationFailed:
    error: GeolocationError


@dataclass(frozen=True)
class ReconnectDue:
    pass


SessionEvent = Union[
    TransportOpened,
    TransportClosed,
    TransportFailed,
    MessageReceived,
    PositionAcquired,
    GeolocationFailed,
    ReconnectDue,
]

StatusListener = Callable[[TrackingStatus], None]


class ReconnectPolicy:
    """Delay before the next reconnect attempt.

    With the default settings this is a fixed 3000 ms; `backoff_factor > 1` grows the delay per
    consecutive failure up to `max_delay_ms`, and `jitter_ratio` spreads it by +/- that fraction.
    """

    def __init__(self, settings: ReconnectSettings, rng: random.Random | None = None):
        self._settings = settings
        self._rng = rng or random.Random()
        self.attempts = 0

    def next_delay_ms(self) -> int:
        cfg = self._settings
        delay = cfg.delay_ms * (cfg.backoff_factor ** self.attempts)
        if cfg.backoff_factor > 1.0:
            delay = min(delay, max(cfg.delay_ms, cfg.max_delay_ms))
        if cfg.jitter_ratio > 0:
            delay *= 1 + self._rng.uniform(-cfg.jitter_ratio, cfg.jitter_ratio)
        self.attempts += 1
        return max(0, int(delay))

    def reset(self) -> None:
        self.attempts = 0


class ConnectionSession:
    def __init__(
        self,
        settings: Settings,
        *,
        transport: Transport,
        position_source: PositionSource,
        profile: Profile | None = None,
        user_id: str | None = None,
        dev_mode: bool | None = None,
        url: str | None = None,
        reconnect: ReconnectSettings | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._position_source = position_source
        self._profile = profile
        self._explicit_user_id = user_id
        self._dev_mode = settings.is_dev() if dev_mode is None else dev_mode
        self._url = url or settings.resolve_ws_url()
        self._reconnect = ReconnectPolicy(reconnect or settings.client.reconnect)
        self._slot_labels = list(settings.tracking.slot_labels)
        self._stale_threshold_ms = settings.tracking.stale_threshold_ms
        self._geo_retry_seconds = settings.client.geolocation.retry_delay_ms / 1000

        self.state = ConnectionState.DISCONNECTED
        self.error: str | None = None
        self.blocked_reason: str | None = None
        self.position: Position | None = None
        self.selection: TargetSelection | None = None
        self.peer_positions = PositionStore()
        self.dropped_sends = 0
        self.sent_updates = 0
        self.connect_attempts = 0

        self._user_id: str | None = None
        self._geolocation_failed = False
        self._tracking = False
        self._connection: Connection | None = None
        self._transport_task: asyncio.Task | None = None
        self._geo_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._listeners: list[StatusListener] = []

    # -- identity / gate -------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def profile(self) -> Profile | None:
        return self._profile

    def _resolve_identity(self) -> str:
        if self._explicit_user_id:
            return self._explicit_user_id
        return resolve_user_id(
            dev_mode=self._dev_mode,
            dev_user_id=self._settings.tracking.dev_user_id,
            profile=self._profile,
            identity_file=resolve_state_path(self._settings.client.identity_file),
        )

    def set_profile(self, profile: Profile | None) -> None:
        """Profile completion can happen mid-session; the gate picks it up on the next send."""
        self._profile = profile
        if self._user_id is not None or profile is not None:
            self._user_id = self._resolve_identity()
        if self.blocked_reason and self.gate().allowed:
            self.blocked_reason = None
            self.error = None
        self._notify()

    def gate(self) -> GateDecision:
        return can_track(dev_mode=self._dev_mode, profile=self._profile, identity=self._user_id)

    # -- listeners / snapshots ---------------------------------------------

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with suppress(ValueError):
            self._listeners.remove(listener)

    def directions(self) -> dict[str, DirectionInfo | None]:
        """Recompute slot directions, first dropping peer fixes older than the stale threshold."""
        evicted = self.peer_positions.evict_stale(now_ms(), self._stale_threshold_ms)
        if evicted:
            logger.info("dropped stale peer positions: %s", evicted)
        return compute_directions(
            self.position,
            self.selection,
            self.peer_positions,
            slot_labels=self._slot_labels,
        )

    def status(self) -> TrackingStatus:
        return TrackingStatus(
            state=self.state,
            user_id=self._user_id,
            is_tracking=self._tracking,
            blocked_reason=self.blocked_reason,
            error=self.error,
            position=self.position,
            selection=self.selection,
            directions=self.directions(),
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("tracking status listener failed")

    def _set_state(self, state: ConnectionState) -> None:
        if self.state is state:
            return
        logger.info("connection state %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    # -- lifecycle ---------------------------------------------------------

    async def start_tracking(self) -> None:
        """Open the transport and the geolocation watch together; no-op if already tracking."""
        if self._tracking or self.state is not ConnectionState.DISCONNECTED:
            logger.debug("start_tracking ignored state=%s", self.state.value)
            return

        if self._user_id is None:
            self._user_id = self._resolve_identity()
        decision = self.gate()
        if not decision.allowed:
            self.blocked_reason = decision.reason
            self.error = decision.message
            logger.info("tracking blocked reason=%s", decision.reason)
            self._notify()
            return

        self._tracking = True
        self.blocked_reason = None
        self.error = None
        self._reconnect.reset()
        self._open_transport()
        self._geo_task = asyncio.create_task(self._watch_positions(), name=f"geolocation:{self._user_id}")

    async def stop_tracking(self) -> None:
        """Tear down the geolocation watch, transport and reconnect timer together. Idempotent."""
        self._tracking = False
        current = asyncio.current_task()
        tasks = [t for t in (self._geo_task, self._reconnect_task, self._transport_task) if t is not None]
        self._geo_task = None
        self._reconnect_task = None
        self._transport_task = None
        connection, self._connection = self._connection, None
        for task in tasks:
            if task is not current:
                task.cancel()
        self._set_state(ConnectionState.DISCONNECTED)

        if connection is not None:
            with suppress(Exception):
                await connection.close()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("background task %s failed before stop", task.get_name())

    async def aclose(self) -> None:
        await self.stop_tracking()

    async def __aenter__(self) -> "ConnectionSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- background tasks --------------------------------------------------

    def _open_transport(self) -> None:
        self._transport_task = asyncio.create_task(self._run_transport(), name=f"transport:{self._user_id}")

    async def _run_transport(self) -> None:
        self.connect_attempts += 1
        self._set_state(ConnectionState.CONNECTING)
        logger.info("connecting to %s", self._url)
        try:
            connection = await self._transport.connect(self._url)
        except TransportError as exc:
            await self.handle_event(TransportFailed(str(exc)))
            return
        await self.handle_event(TransportOpened(connection))
        if self._connection is not connection:
            return
        try:
            while True:
                text = await connection.recv()
                await self.handle_event(MessageReceived(text))
        except ConnectionLost as exc:
            if exc.clean:
                await self.handle_event(TransportClosed(clean=True, reason=exc.reason))
            else:
                await self.handle_event(TransportFailed(exc.reason))
        except Exception as exc:
            logger.exception("websocket receive loop failed")
            with suppress(Exception):
                await connection.close()
            await self.handle_event(TransportFailed(str(exc)))

    async def _watch_positions(self) -> None:
        """Run the position watch; a read timeout is reported and the watch resumes."""
        while self._tracking:
            try:
                async for position in self._position_source.watch():
                    await self.handle_event(PositionAcquired(position))
                return
            except GeolocationError as exc:
                await self.handle_event(GeolocationFailed(exc))
                if exc.code is not GeolocationErrorCode.TIMEOUT:
                    return
            await asyncio.sleep(self._geo_retry_seconds)

    async def _reconnect_after(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        self._reconnect_task = None
        await self.handle_event(ReconnectDue())

    def _schedule_reconnect(self) -> None:
        if not self._tracking or self._reconnect_task is not None:
            return
        delay_ms = self._reconnect.next_delay_ms()
        logger.info("reconnecting in %sms", delay_ms)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay_ms), name=f"reconnect:{self._user_id}")

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # -- state machine -----------------------------------------------------

    async def handle_event(self, event: SessionEvent) -> None:
        if isinstance(event, TransportOpened):
            await self._on_opened(event.connection)
        elif isinstance(event, TransportFailed):
            logger.warning("websocket error: %s", event.reason)
            self.error = "WebSocket connection failed"
            self._set_state(ConnectionState.ERROR)
            await self._on_closed()
        elif isinstance(event, TransportClosed):
            logger.info("websocket disconnected")
            await self._on_closed()
        elif isinstance(event, MessageReceived):
            await self._on_message(event.text)
        elif isinstance(event, PositionAcquired):
            self.position = event.position
            if self._geolocation_failed:
                self._geolocation_failed = False
                self.error = None
            await self.send_position(event.position)
            self._notify()
        elif isinstance(event, GeolocationFailed):
            logger.warning("geolocation error code=%s", event.error.code.value)
            self.error = event.error.user_message
            self._geolocation_failed = True
            self._notify()
        elif isinstance(event, ReconnectDue):
            if self._tracking and self.state is ConnectionState.DISCONNECTED:
                logger.info("attempting to reconnect")
                self._open_transport()
        else:
            raise TypeError(f"unsupported session event: {event!r}")

    async def _on_opened(self, connection: Connection) -> None:
        if not self._tracking:
            with suppress(Exception):
                await connection.close()
            return
        self._connection = connection
        self._cancel_reconnect()
        self._reconnect.reset()
        self.error = None
        self._set_state(ConnectionState.CONNECTED)

    async def _on_closed(self) -> None:
        self._connection = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    async def _on_message(self, text: str) -> None:
        try:
            message = decode_message(text)
        except MalformedMessageError as exc:
            logger.error("error parsing websocket message: %s", exc)
            return

        if isinstance(message, SelectedUsersMessage):
            if not self._user_id:
                return
            try:
                self.selection = message.to_selection(self._user_id)
            except ValueError as exc:
                logger.error("dropping unusable selected_users payload: %s", exc)
                return
            logger.info("selected users updated: %s", self.selection.slots)
            self._notify()
        elif isinstance(message, GpsUpdateMessage):
            self.peer_positions.put(message.user_id, message.to_position())
            if self.selection is not None and self.selection.includes(message.user_id):
                self._notify()
        elif isinstance(message, PingMessage):
            await self._send(encode_message(PongMessage()))
        elif isinstance(message, PongMessage):
            pass
        elif isinstance(message, UnknownMessage):
            logger.info("unknown message type: %s", message.type)

    # -- outbound ------------------------------------------------------------

    async def _send(self, text: str) -> bool:
        connection = self._connection
        if connection is None or self.state is not ConnectionState.CONNECTED:
            return False
        try:
            await connection.send(text)
        except ConnectionLost as exc:
            logger.debug("send failed, connection lost: %s", exc)
            return False
        return True

    async def send_position(self, position: Position) -> bool:
        """Transmit one fix if the channel is open and the gate passes; otherwise drop it."""
        if self._connection is None or self.state is not ConnectionState.CONNECTED or not self._user_id:
            self.dropped_sends += 1
            logger.debug("dropping position update: transport not ready")
            return False
        if not self.gate().allowed:
            self.dropped_sends += 1
            logger.debug("dropping position update: capability gate closed")
            return False
        sent = await self._send(encode_message(GpsUpdateMessage.from_position(self._user_id, position)))
        if sent:
            self.sent_updates += 1
        else:
            self.dropped_sends += 1
        return sent
