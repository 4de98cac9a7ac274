"""
User identity bootstrapping.

Resolution order:
1. development mode -> the fixed development sentinel (`tracking.dev_user_id`)
2. an externally verified profile -> its UUID
3. fallback -> a random `user_<token>` persisted to a local file and reused on later runs
"""

from __future__ import annotations

import logging
import secrets
import string
from pathlib import Path

from proximeet.domain.models import Profile

logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def generate_user_id(length: int = 9) -> str:
    return "user_" + "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def load_or_create_user_id(path: Path) -> str:
    """Return the identity stored at `path`, creating and persisting a new one if needed."""
    try:
        stored = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        stored = ""
    if stored:
        return stored

    user_id = generate_user_id()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(user_id + "\n", encoding="utf-8")
    logger.info("generated fallback user id path=%s", path)
    return user_id


def resolve_user_id(
    *,
    dev_mode: bool,
    dev_user_id: str,
    profile: Profile | None,
    identity_file: Path,
) -> str:
    if dev_mode:
        logger.info("development mode: using fixed user id %s", dev_user_id)
        return dev_user_id
    if profile is not None and profile.uuid:
        logger.info("using profile uuid as user id")
        return profile.uuid
    return load_or_create_user_id(identity_file)
