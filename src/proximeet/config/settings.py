# src/proximeet/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/proximeet/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `PROXIMEET_ENV`, `PROXIMEET_WS_URL`)
- an external YAML file via `PROXIMEET_CONFIG_PATH`

Tuning knobs (reconnect delay, stale threshold, rate limits) live in YAML, not in tracking logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from proximeet.core.env import load_dotenv_if_present

DEV_ENVIRONMENTS = frozenset({"dev", "development", "test"})


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `proximeet.config`."""
    text = resources.files("proximeet.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "ProxiMeet"
    environment: str = "production"
    http_timeout_seconds: float = 10
    log_level: str = "INFO"


class ReferencePoint(BaseModel):
    latitude: float = Field(37.7749, ge=-90, le=90)
    longitude: float = Field(-122.4194, ge=-180, le=180)


class TrackingSettings(BaseModel):
    stale_threshold_ms: int = Field(60_000, ge=1)
    sweep_interval_seconds: float = Field(15.0, gt=0)
    slot_labels: list[str] = Field(default_factory=lambda: ["slotA", "slotB"])
    dev_user_id: str = "1d7s7pl"
    monotonic_positions: bool = False
    reference_point: ReferencePoint = Field(default_factory=ReferencePoint)


class GeolocationSettings(BaseModel):
    high_accuracy: bool = True
    timeout_ms: int = Field(10_000, ge=1)
    retry_delay_ms: int = Field(1_000, ge=0)
    maximum_age_ms: int = Field(5_000, ge=0)
    ip_fallback_accuracy_m: float = Field(10_000.0, ge=0)
    ip_fallback_interval_seconds: float = Field(30.0, gt=0)
    simulated_interval_seconds: float = Field(2.0, gt=0)
    simulated_jitter_m: float = Field(150.0, ge=0)


class ReconnectSettings(BaseModel):
    delay_ms: int = Field(3_000, ge=0)
    backoff_factor: float = Field(1.0, ge=1.0)
    max_delay_ms: int = Field(30_000, ge=0)
    jitter_ratio: float = Field(0.0, ge=0, le=1)


class ClientSettings(BaseModel):
    ws_url: str | None = None
    dev_ws_url: str = "ws://localhost:3002"
    prod_ws_url: str = "wss://arweave.tech/ws"
    identity_file: str = ".state/proximeet/user-id"
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    geolocation: GeolocationSettings = Field(default_factory=GeolocationSettings)


class ServerRateLimitSettings(BaseModel):
    updates_per_minute: float = Field(120.0, gt=0)
    burst: float = Field(20.0, gt=0)


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3002
    ping_interval_seconds: float = Field(25.0, gt=0)
    rate_limit: ServerRateLimitSettings = Field(default_factory=ServerRateLimitSettings)


class IngestionSettings(BaseModel):
    ip_geolocation_url: str = "https://ipapi.co/json/"
    profile_api_url: str = "https://arweave.tech/api/etgl"


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)

    def is_dev(self) -> bool:
        return self.app.environment.strip().lower() in DEV_ENVIRONMENTS

    def resolve_ws_url(self) -> str:
        """Pick the transport endpoint once: explicit override, else the dev/prod default."""
        if self.client.ws_url:
            return self.client.ws_url
        return self.client.dev_ws_url if self.is_dev() else self.client.prod_ws_url


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay the whitelisted environment variables onto the raw settings payload."""
    load_dotenv_if_present()
    data = dict(data)

    environment = os.getenv("PROXIMEET_ENV")
    if environment:
        data.setdefault("app", {})["environment"] = environment

    log_level = os.getenv("PROXIMEET_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    ws_url = os.getenv("PROXIMEET_WS_URL")
    if ws_url:
        data.setdefault("client", {})["ws_url"] = ws_url

    state_dir = os.getenv("PROXIMEET_STATE_DIR")
    if state_dir:
        data.setdefault("client", {})["identity_file"] = str(Path(state_dir) / "user-id")

    profile_url = os.getenv("PROXIMEET_PROFILE_API_URL")
    if profile_url:
        data.setdefault("ingestion", {})["profile_api_url"] = profile_url

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("PROXIMEET_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
