"""
In-memory position store: user identity -> last known `Position`.

The store is the only structure written by many producers at once (one per connected
client), so every access goes through a single lock. Critical sections never await,
which keeps the store safe from both the asyncio loop and worker threads.
"""

from __future__ import annotations

import logging
import threading

from proximeet.domain.models import Position

logger = logging.getLogger(__name__)


class PositionStore:
    """Last-write-wins mapping of identity to position.

    With `monotonic=True`, a `put` whose `captured_at_ms` is older than the stored entry is
    rejected instead of overwriting it (protects against reordered frames after a reconnect).
    """

    def __init__(self, *, monotonic: bool = False):
        self._monotonic = monotonic
        self._entries: dict[str, Position] = {}
        self._lock = threading.Lock()

    @property
    def monotonic(self) -> bool:
        return self._monotonic

    def put(self, identity: str, position: Position) -> bool:
        """Store `position` for `identity`; returns False only when monotonic protection rejects it."""
        with self._lock:
            if self._monotonic:
                current = self._entries.get(identity)
                if current is not None and position.captured_at_ms < current.captured_at_ms:
                    logger.debug(
                        "dropping out-of-order position user=%s ts=%s stored_ts=%s",
                        identity,
                        position.captured_at_ms,
                        current.captured_at_ms,
                    )
                    return False
            self._entries[identity] = position
            return True

    def get(self, identity: str) -> Position | None:
        with self._lock:
            return self._entries.get(identity)

    def remove(self, identity: str) -> Position | None:
        with self._lock:
            return self._entries.pop(identity, None)

    def evict_stale(self, now_ms: int, threshold_ms: int) -> list[str]:
        """Remove entries captured more than `threshold_ms` before `now_ms`."""
        cutoff = int(now_ms) - int(threshold_ms)
        with self._lock:
            stale = [uid for uid, pos in self._entries.items() if pos.captured_at_ms < cutoff]
            for uid in stale:
                del self._entries[uid]
        if stale:
            logger.debug("evicted %s stale positions", len(stale))
        return stale

    def snapshot(self) -> dict[str, Position]:
        with self._lock:
            return dict(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._entries
