import pytest

from proximeet.config.settings import get_settings


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


def test_defaults_are_production(fresh_settings, monkeypatch):
    monkeypatch.delenv("PROXIMEET_ENV", raising=False)
    monkeypatch.delenv("PROXIMEET_WS_URL", raising=False)
    monkeypatch.delenv("PROXIMEET_CONFIG_PATH", raising=False)
    settings = fresh_settings()

    assert not settings.is_dev()
    assert settings.resolve_ws_url() == "wss://arweave.tech/ws"
    assert settings.client.reconnect.delay_ms == 3000
    assert settings.tracking.stale_threshold_ms == 60_000


def test_env_selects_dev_endpoint(fresh_settings, monkeypatch):
    monkeypatch.delenv("PROXIMEET_WS_URL", raising=False)
    monkeypatch.delenv("PROXIMEET_CONFIG_PATH", raising=False)
    monkeypatch.setenv("PROXIMEET_ENV", "development")
    settings = fresh_settings()

    assert settings.is_dev()
    assert settings.resolve_ws_url() == "ws://localhost:3002"


def test_explicit_ws_url_wins(fresh_settings, monkeypatch):
    monkeypatch.delenv("PROXIMEET_CONFIG_PATH", raising=False)
    monkeypatch.setenv("PROXIMEET_ENV", "development")
    monkeypatch.setenv("PROXIMEET_WS_URL", "ws://tracker.internal:9000/ws")
    assert fresh_settings().resolve_ws_url() == "ws://tracker.internal:9000/ws"


def test_config_path_replaces_defaults(fresh_settings, monkeypatch, tmp_path):
    monkeypatch.delenv("PROXIMEET_ENV", raising=False)
    path = tmp_path / "custom.yaml"
    path.write_text("tracking:\n  stale_threshold_ms: 5000\n", encoding="utf-8")
    monkeypatch.setenv("PROXIMEET_CONFIG_PATH", str(path))

    settings = fresh_settings()

    assert settings.tracking.stale_threshold_ms == 5000
    assert settings.server.port == 3002


def test_relative_state_paths_resolve_against_home(monkeypatch, tmp_path):
    from proximeet.core.env import resolve_state_path

    monkeypatch.setenv("PROXIMEET_HOME", str(tmp_path))
    assert resolve_state_path(".state/proximeet/user-id") == tmp_path.resolve() / ".state" / "proximeet" / "user-id"
    assert resolve_state_path(tmp_path / "abs") == tmp_path / "abs"
