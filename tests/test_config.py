"""Tests for configuration loading."""
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from smart_time_tracker.core.config import Config, get_config


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("SMART_TIME_TRACKER_LOG_LEVEL", "SMART_TIME_TRACKER_SYNC__API_URL"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestDefaults:
    def test_defaults(self):
        config = Config()
        assert config.tracking.min_session_seconds == 1.0
        assert config.tracking.ignored_url_prefixes == ["chrome://", "edge://", "about:"]
        assert config.sync.api_url == "http://localhost:3000"
        assert config.sync.min_token_length == 20
        assert config.server.pair_code_ttl_seconds == 120
        assert config.server.token_ttl_seconds == 2592000
        assert config.server.code_generation_attempts == 5
        assert config.server.list_limit == 200
        assert config.server.list_limit_with_dates == 2000
        assert config.server.allow_legacy_identity is True

    def test_db_path_under_data_dir(self, tmp_path: Path):
        config = Config(data_dir=tmp_path / "data")
        assert config.db_path == tmp_path / "data" / "tracker.db"

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            Config(log_level="LOUD")
        with pytest.raises(ValidationError):
            Config(tracking={"idle_threshold_seconds": 5})


class TestLoading:
    def test_yaml_file(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "log_level: DEBUG\n"
            "sync:\n"
            "  api_url: https://tracker.example\n"
            "  interval_seconds: 60\n"
            "server:\n"
            "  allow_legacy_identity: false\n"
        )
        config = Config.load(config_file)
        assert config.log_level == "DEBUG"
        assert config.sync.api_url == "https://tracker.example"
        assert config.sync.interval_seconds == 60
        assert config.server.allow_legacy_identity is False

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        assert Config.load(tmp_path / "nope.yaml").log_level == "INFO"

    def test_environment_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("log_level: DEBUG\nsync:\n  api_url: https://from-yaml.example\n")
        monkeypatch.setenv("SMART_TIME_TRACKER_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("SMART_TIME_TRACKER_SYNC__API_URL", "https://from-env.example")

        config = Config.load(config_file)
        assert config.log_level == "WARNING"
        assert config.sync.api_url == "https://from-env.example"

    def test_save_and_reload(self, tmp_path: Path):
        config = Config(data_dir=tmp_path / "data", sync={"api_url": "https://saved.example"})
        path = tmp_path / "saved" / "config.yaml"
        config.save(path)

        reloaded = Config.load(path)
        assert reloaded.sync.api_url == "https://saved.example"
        assert reloaded.data_dir == tmp_path / "data"
        assert oct(path.stat().st_mode & 0o777) == oct(0o600)

    def test_ensure_directories(self, tmp_path: Path):
        config = Config(data_dir=tmp_path / "d", log_dir=tmp_path / "l", config_dir=tmp_path / "c")
        config.ensure_directories()
        assert (tmp_path / "d").is_dir()
        assert (tmp_path / "l").is_dir()
        assert (tmp_path / "c").is_dir()
        assert oct((tmp_path / "d").stat().st_mode & 0o777) == oct(0o700)

    def test_get_config_is_cached(self):
        assert get_config() is get_config()
