"""
Tests for hostel_session.config and hostel_session.connection.

Covers environment defaults, config file round trips, the renewal interval
bound and the connection factories.
"""

import json
import logging
from pathlib import Path

import pytest

from hostel_session.config import (
    DEFAULT_API_URL,
    RENEW_INTERVAL,
    SessionConfig,
    get_int_env,
    get_state_dir,
    normalize_api_url,
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "HMS_API_URL",
        "HMS_RENEW_INTERVAL",
        "HMS_RENEWAL_TIMEOUT",
        "HMS_REQUEST_TIMEOUT",
        "HMS_STATE_DIR",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


class TestGetIntEnv:
    def test_missing_uses_default(self, monkeypatch):
        monkeypatch.delenv("HMS_TEST_INT", raising=False)
        assert get_int_env("HMS_TEST_INT", 7) == 7

    def test_parses_value(self, monkeypatch):
        monkeypatch.setenv("HMS_TEST_INT", "42")
        assert get_int_env("HMS_TEST_INT", 7) == 42

    def test_garbage_uses_default(self, monkeypatch):
        monkeypatch.setenv("HMS_TEST_INT", "soon")
        assert get_int_env("HMS_TEST_INT", 7) == 7


class TestNormalizeApiUrl:
    @pytest.mark.parametrize("raw,expected", [
        ("https://host/api", "https://host/api"),
        ("https://host/api/", "https://host/api"),
        ("host/api", "https://host/api"),
        ("  http://localhost:5000/api/ ", "http://localhost:5000/api"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_api_url(raw) == expected


# ---------------------------------------------------------------------------
# SessionConfig
# ---------------------------------------------------------------------------


class TestSessionConfig:
    def test_defaults_from_clean_env(self, clean_env):
        config = SessionConfig.from_env()
        assert config.api_url == DEFAULT_API_URL
        assert config.renew_interval == RENEW_INTERVAL
        assert config.renewal_timeout == 0
        assert config.request_timeout == 30
        assert config.state_dir == Path.home() / ".hostel-session"

    def test_env_overrides(self, clean_env, tmp_path):
        clean_env.setenv("HMS_API_URL", "localhost:5000/api/")
        clean_env.setenv("HMS_RENEW_INTERVAL", "600")
        clean_env.setenv("HMS_RENEWAL_TIMEOUT", "10")
        clean_env.setenv("HMS_STATE_DIR", str(tmp_path))

        config = SessionConfig.from_env()

        assert config.api_url == "https://localhost:5000/api"
        assert config.renew_interval == 600
        assert config.renewal_timeout == 10
        assert config.state_dir == tmp_path
        assert get_state_dir() == tmp_path

    @pytest.mark.parametrize("interval", [900, 1200, 0, -5])
    def test_renew_interval_must_beat_credential_lifetime(self, interval):
        with pytest.raises(ValueError):
            SessionConfig(renew_interval=interval)

    def test_paths_live_under_state_dir(self, tmp_path):
        config = SessionConfig(state_dir=tmp_path)
        assert config.identity_path == tmp_path / "session.json"
        assert config.cookie_path == tmp_path / "cookies.pickle"

    def test_save_and_load(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        config = SessionConfig(
            api_url="http://127.0.0.1:5000/api",
            renew_interval=300,
            renewal_timeout=15,
            state_dir=tmp_path / "state",
            degraded_resources={"/audit": "empty_list"},
        )
        config.save(path)

        loaded = SessionConfig.load(path)

        assert loaded.to_dict() == config.to_dict()
        assert loaded.degraded_resources == {"/audit": "empty_list"}

    def test_partial_file_uses_env_defaults(self, clean_env, tmp_path):
        clean_env.setenv("HMS_RENEWAL_TIMEOUT", "20")
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"api_url": "https://console.example/api"}))

        config = SessionConfig.load(path)

        assert config.api_url == "https://console.example/api"
        assert config.renewal_timeout == 20

    def test_corrupt_file_falls_back_to_env(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        clean_env.setenv("HMS_API_URL", "https://fallback.example/api")

        assert SessionConfig.load(path).api_url == "https://fallback.example/api"

    def test_missing_file_falls_back_to_env(self, clean_env, tmp_path):
        assert SessionConfig.load(tmp_path / "absent.json").api_url == DEFAULT_API_URL

    def test_invalid_interval_in_file_raises(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"renew_interval": 900}))
        with pytest.raises(ValueError):
            SessionConfig.load(path)

    def test_empty_degraded_mapping_survives_round_trip(self, clean_env, tmp_path):
        """An empty mapping means "no degraded resources", not "use defaults"."""
        path = tmp_path / "config.json"
        SessionConfig(state_dir=tmp_path, degraded_resources={}).save(path)

        assert json.loads(path.read_text())["degraded_resources"] == {}
        assert SessionConfig.load(path).degraded_resources == {}

    def test_degraded_mapping_absent_by_default(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"api_url": "https://console.example/api"}))

        assert SessionConfig.load(path).degraded_resources is None
        assert "degraded_resources" not in SessionConfig().to_dict()

    def test_degraded_mapping_must_be_an_object(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"degraded_resources": ["/semesters"]}))
        with pytest.raises(ValueError):
            SessionConfig.load(path)


# ---------------------------------------------------------------------------
# Connection factories
# ---------------------------------------------------------------------------


class TestTimeoutAndCookies:
    def test_zero_timeout_means_none(self):
        from hostel_session.connection import create_timeout

        assert create_timeout(0).total is None
        assert create_timeout(12).total == 12

    @pytest.mark.asyncio
    async def test_missing_cookie_file_gives_empty_jar(self, tmp_path):
        from hostel_session.connection import create_cookie_jar

        jar = create_cookie_jar(tmp_path / "cookies.pickle")
        assert len(jar) == 0

    @pytest.mark.asyncio
    async def test_unreadable_cookie_file_gives_empty_jar(self, tmp_path, caplog):
        from hostel_session.connection import create_cookie_jar

        path = tmp_path / "cookies.pickle"
        path.write_bytes(b"not a pickle")
        with caplog.at_level(logging.WARNING, logger="hostel_session.connection"):
            jar = create_cookie_jar(path)

        assert len(jar) == 0
        assert "Ignoring unreadable cookie file" in caplog.text

    @pytest.mark.asyncio
    async def test_plain_connector(self):
        from hostel_session.connection import create_connector

        connector = create_connector()
        try:
            assert connector.closed is False
        finally:
            await connector.close()
