"""
Simple in-process rate limiting utilities.

The broadcaster uses these to cap how many `gps_update` frames a single identity can
push per minute; excess frames are dropped (location telemetry is superseded by the next tick).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class TokenBucketRateLimiter:
    """Token bucket limiter for N events per minute (best-effort, non-blocking)."""

    max_per_minute: float
    burst: float | None = None
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        rpm = float(self.max_per_minute)
        if rpm <= 0:
            raise ValueError("max_per_minute must be > 0")
        self._capacity = float(self.burst) if self.burst is not None else float(rpm)
        self._tokens = self._capacity
        self._refill_per_sec = rpm / 60.0
        self._last = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self._last
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_per_sec)
        self._last = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take `tokens` if available; return False instead of waiting."""
        need = float(tokens)
        if need <= 0:
            return True
        self._refill()
        if self._tokens >= need:
            self._tokens -= need
            return True
        return False


@dataclass
class KeyedRateLimiter:
    """One token bucket per key (e.g. per user identity)."""

    max_per_minute: float
    burst: float | None = None
    clock: Callable[[], float] = time.monotonic
    _buckets: dict[str, TokenBucketRateLimiter] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def allow(self, key: str) -> bool:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucketRateLimiter(self.max_per_minute, burst=self.burst, clock=self.clock)
                self._buckets[key] = bucket
            return bucket.try_acquire()

    def forget(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
