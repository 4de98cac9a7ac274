"""Server-side fan-out of position updates and target selections."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from proximeet.core.errors import MalformedMessageError
from proximeet.core.rate_limit import KeyedRateLimiter
from proximeet.core.time import now_ms
from proximeet.domain.models import DirectionInfo, Position, TargetSelection
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
from proximeet.tracking.store import PositionStore
from proximeet.tracking.targets import TargetAssignment

logger = logging.getLogger(__name__)

Sender = Callable[[str], Awaitable[None]]


@dataclass
class Subscriber:
    connection_id: str
    send: Sender
    identity: str | None = None
    last_seen_ms: int = field(default_factory=now_ms)


@dataclass
class BroadcasterStats:
    updates_accepted: int = 0
    updates_rate_limited: int = 0
    updates_rejected: int = 0
    relayed: int = 0
    malformed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "updates_accepted": int(self.updates_accepted),
            "updates_rate_limited": int(self.updates_rate_limited),
            "updates_rejected": int(self.updates_rejected),
            "relayed": int(self.relayed),
            "malformed": int(self.malformed),
        }


class ProximityBroadcaster:
    """Owns the shared PositionStore and TargetAssignment; fans updates out to subscribers.

    Connection bookkeeping lives on the event loop thread; only the store is shared with
    other threads and carries its own lock.
    """

    def __init__(
        self,
        store: PositionStore,
        targets: TargetAssignment,
        *,
        rate_limiter: KeyedRateLimiter | None = None,
        stale_threshold_ms: int = 60_000,
        slot_labels: list[str] | None = None,
    ):
        self.store = store
        self.targets = targets
        self._rate_limiter = rate_limiter
        self._stale_threshold_ms = int(stale_threshold_ms)
        self._slot_labels = list(slot_labels or [])
        self._subscribers: dict[str, Subscriber] = {}
        self._by_identity: dict[str, set[str]] = {}
        self.stats = BroadcasterStats()

    # -- connection registry -------------------------------------------------

    async def register(self, connection_id: str, send: Sender, identity: str | None = None) -> Subscriber:
        subscriber = Subscriber(connection_id=connection_id, send=send)
        self._subscribers[connection_id] = subscriber
        logger.info("subscriber connected conn=%s user=%s", connection_id, identity)
        if identity:
            await self.bind(connection_id, identity)
        return subscriber

    async def bind(self, connection_id: str, identity: str) -> None:
        """Attach an identity to a connection and replay its current selection, if any."""
        subscriber = self._subscribers.get(connection_id)
        if subscriber is None or subscriber.identity == identity:
            return
        if subscriber.identity:
            self._detach(subscriber)
        subscriber.identity = identity
        self._by_identity.setdefault(identity, set()).add(connection_id)
        selection = self.targets.get(identity)
        if selection is not None:
            await self._deliver_selection(selection, only=connection_id)

    def unregister(self, connection_id: str) -> None:
        subscriber = self._subscribers.pop(connection_id, None)
        if subscriber is None:
            return
        self._detach(subscriber)
        logger.info("subscriber disconnected conn=%s user=%s", connection_id, subscriber.identity)

    def _detach(self, subscriber: Subscriber) -> None:
        if not subscriber.identity:
            return
        conns = self._by_identity.get(subscriber.identity)
        if conns is None:
            return
        conns.discard(subscriber.connection_id)
        if not conns:
            del self._by_identity[subscriber.identity]
            self._release_rate_limit(subscriber.identity)

    def _release_rate_limit(self, identity: str) -> None:
        """Drop the identity's token bucket once it has neither a connection nor a stored position."""
        if self._rate_limiter is None:
            return
        if identity in self._by_identity or identity in self.store:
            return
        self._rate_limiter.forget(identity)

    def connection_count(self) -> int:
        return len(self._subscribers)

    def connections_for(self, identity: str) -> set[str]:
        return set(self._by_identity.get(identity, ()))

    # -- inbound ---------------------------------------------------------------

    async def handle_frame(self, connection_id: str, text: str) -> None:
        """Dispatch one raw frame from a connection. Malformed frames are logged and dropped."""
        subscriber = self._subscribers.get(connection_id)
        if subscriber is None:
            return
        subscriber.last_seen_ms = now_ms()
        try:
            message = decode_message(text)
        except MalformedMessageError as exc:
            self.stats.malformed += 1
            logger.warning("dropping malformed frame conn=%s err=%s", connection_id, exc)
            return

        if isinstance(message, GpsUpdateMessage):
            await self.handle_gps_update(connection_id, message)
        elif isinstance(message, PingMessage):
            await self._send(connection_id, encode_message(PongMessage()))
        elif isinstance(message, PongMessage):
            pass
        elif isinstance(message, SelectedUsersMessage):
            logger.warning("ignoring client-sent selected_users conn=%s", connection_id)
        elif isinstance(message, UnknownMessage):
            logger.info("unknown message type conn=%s type=%s", connection_id, message.type)

    async def handle_gps_update(self, connection_id: str, message: GpsUpdateMessage) -> bool:
        subscriber = self._subscribers.get(connection_id)
        if subscriber is None:
            return False
        if subscriber.identity is None:
            await self.bind(connection_id, message.user_id)
        elif subscriber.identity != message.user_id:
            self.stats.updates_rejected += 1
            logger.warning(
                "rejecting gps_update for another user conn=%s bound=%s claimed=%s",
                connection_id,
                subscriber.identity,
                message.user_id,
            )
            return False

        if self._rate_limiter is not None and not self._rate_limiter.allow(message.user_id):
            self.stats.updates_rate_limited += 1
            logger.debug("rate limited gps_update user=%s", message.user_id)
            return False

        if not self.store.put(message.user_id, message.to_position()):
            self.stats.updates_rejected += 1
            return False
        self.stats.updates_accepted += 1
        await self._relay(message)
        return True

    async def _relay(self, message: GpsUpdateMessage) -> None:
        watchers = self.targets.watchers_of(message.user_id)
        watchers.discard(message.user_id)
        if not watchers:
            return
        text = encode_message(message)
        for watcher in watchers:
            for connection_id in self.connections_for(watcher):
                if await self._send(connection_id, text):
                    self.stats.relayed += 1

    # -- selections --------------------------------------------------------------

    async def apply_selection(self, selection: TargetSelection) -> TargetSelection | None:
        """Replace the user's selection wholesale and push it to every connection of that user."""
        previous = self.targets.set(selection)
        logger.info("selection updated user=%s slots=%s", selection.self_id, selection.slots)
        await self._deliver_selection(selection)
        return previous

    async def _deliver_selection(self, selection: TargetSelection, only: str | None = None) -> None:
        connection_ids = [only] if only else sorted(self.connections_for(selection.self_id))
        if not connection_ids:
            return
        frames = [encode_message(SelectedUsersMessage.from_selection(selection))]
        # Known target positions go out immediately so the client need not wait a full tick.
        for target_id in selection.targets():
            position = self.store.get(target_id)
            if position is not None:
                frames.append(encode_message(GpsUpdateMessage.from_position(target_id, position)))
        for connection_id in connection_ids:
            for frame in frames:
                if not await self._send(connection_id, frame):
                    break

    def target_positions(self, identity: str) -> dict[str, tuple[str, Position | None]]:
        """Slot label -> (target identity, last known position or None)."""
        selection = self.targets.get(identity)
        if selection is None:
            return {}
        return {
            label: (target_id, self.store.get(target_id))
            for label, target_id in selection.slots.items()
            if target_id
        }

    def directions_for(self, identity: str) -> dict[str, DirectionInfo | None]:
        return compute_directions(
            self.store.get(identity),
            self.targets.get(identity),
            self.store,
            slot_labels=self._slot_labels,
        )

    # -- maintenance ---------------------------------------------------------------

    def sweep_stale(self, now: int | None = None) -> list[str]:
        evicted = self.store.evict_stale(now_ms() if now is None else now, self._stale_threshold_ms)
        for identity in evicted:
            self._release_rate_limit(identity)
        if evicted:
            logger.info("evicted %s stale positions", len(evicted))
        return evicted

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Periodically evict positions older than the stale threshold."""
        interval = max(0.05, float(interval_seconds))
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_stale()
            except Exception:
                logger.exception("position sweeper iteration failed")

    async def ping_all(self) -> None:
        frame = encode_message(PingMessage())
        for connection_id in list(self._subscribers):
            await self._send(connection_id, frame)

    async def run_pinger(self, interval_seconds: float) -> None:
        interval = max(0.05, float(interval_seconds))
        while True:
            await asyncio.sleep(interval)
            await self.ping_all()

    async def _send(self, connection_id: str, text: str) -> bool:
        subscriber = self._subscribers.get(connection_id)
        if subscriber is None:
            return False
        try:
            await subscriber.send(text)
        except Exception:
            logger.debug("send failed conn=%s; dropping subscriber", connection_id, exc_info=True)
            self.unregister(connection_id)
            return False
        return True
