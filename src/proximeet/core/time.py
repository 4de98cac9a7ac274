"""
Epoch-millisecond helpers.

Positions and selections carry integer epoch millis on the wire, so every component
reads the clock through `now_ms()` (tests monkeypatch `proximeet.core.time.time.time`).
"""

from __future__ import annotations

import time


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def age_ms(captured_at_ms: int, *, now: int | None = None) -> int:
    """Milliseconds elapsed since `captured_at_ms` (never negative)."""
    current = now_ms() if now is None else int(now)
    return max(0, current - int(captured_at_ms))
