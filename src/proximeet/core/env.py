"""
Environment helpers.

The server, the CLI tracker and the tests start from different working directories, yet they
must agree on two things: which `.env` file holds local overrides (`PROXIMEET_ENV=development`,
a custom WS URL) and where relative state paths such as the persisted identity file live.

- `load_dotenv_if_present()`: load the nearest `.env` once, never overriding the process env
- `get_base_dir()`: directory that relative state paths hang off
- `resolve_state_path()`: absolute path for a configured, possibly-relative location
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import find_dotenv, load_dotenv


@lru_cache
def _dotenv_path() -> Path | None:
    explicit = os.getenv("PROXIMEET_ENV_FILE")
    if explicit:
        path = Path(explicit).expanduser().resolve()
        return path if path.is_file() else None
    found = find_dotenv(usecwd=True)
    return Path(found).resolve() if found else None


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load `.env` once if one is found; returns its path (or None)."""
    path = _dotenv_path()
    if path is not None:
        load_dotenv(dotenv_path=path, override=False)
    return path


def get_base_dir() -> Path:
    """`PROXIMEET_HOME`, else the directory holding `.env`, else the working directory."""
    home = os.getenv("PROXIMEET_HOME")
    if home:
        return Path(home).expanduser().resolve()
    dotenv = _dotenv_path()
    if dotenv is not None:
        return dotenv.parent
    return Path.cwd().resolve()


def resolve_state_path(path: str | Path) -> Path:
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return (get_base_dir() / p).resolve()
