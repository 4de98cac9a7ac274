"""
Capability gate: may this session track and broadcast its location?

Development mode always passes. Otherwise the user needs an established profile that
declares a category (gender) attribute, plus a resolved identity. The gate is cheap and is
re-evaluated on every send because profile completion can land mid-session.
"""

from __future__ import annotations

from dataclasses import dataclass

from proximeet.domain.models import Profile

BLOCKED_MESSAGES = {
    "no_profile": "Location tracking requires a scanned profile.",
    "no_category": "Location tracking requires completing the category selection.",
    "no_identity": "Location tracking requires a user identity.",
}


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str | None = None

    @property
    def message(self) -> str | None:
        return BLOCKED_MESSAGES.get(self.reason) if self.reason else None

    def __bool__(self) -> bool:
        return self.allowed


def can_track(*, dev_mode: bool, profile: Profile | None, identity: str | None) -> GateDecision:
    if dev_mode:
        return GateDecision(True)
    if profile is None:
        return GateDecision(False, "no_profile")
    if not profile.gender:
        return GateDecision(False, "no_category")
    if not identity:
        return GateDecision(False, "no_identity")
    return GateDecision(True)
