"""
Target assignment registry: requesting user -> current `TargetSelection`.

Selections come from the external matcher and are replaced wholesale on every update.
The registry also keeps a reverse index so the broadcaster can answer
"who is tracking X?" without scanning every selection.
"""

from __future__ import annotations

import threading

from proximeet.domain.models import TargetSelection


class TargetAssignment:
    def __init__(self) -> None:
        self._by_self: dict[str, TargetSelection] = {}
        self._watchers: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def set(self, selection: TargetSelection) -> TargetSelection | None:
        """Replace the selection for `selection.self_id`; returns the previous one."""
        with self._lock:
            previous = self._by_self.get(selection.self_id)
            if previous is not None:
                self._unindex(previous)
            self._by_self[selection.self_id] = selection
            for target in selection.targets():
                self._watchers.setdefault(target, set()).add(selection.self_id)
            return previous

    def get(self, self_id: str) -> TargetSelection | None:
        with self._lock:
            return self._by_self.get(self_id)

    def clear(self, self_id: str) -> TargetSelection | None:
        with self._lock:
            previous = self._by_self.pop(self_id, None)
            if previous is not None:
                self._unindex(previous)
            return previous

    def watchers_of(self, target_id: str) -> set[str]:
        """Identities whose current selection includes `target_id`."""
        with self._lock:
            return set(self._watchers.get(target_id, ()))

    def _unindex(self, selection: TargetSelection) -> None:
        for target in selection.targets():
            watchers = self._watchers.get(target)
            if not watchers:
                continue
            watchers.discard(selection.self_id)
            if not watchers:
                del self._watchers[target]

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_self)
