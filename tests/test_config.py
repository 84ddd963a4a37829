"""Tests for configuration loading and saving."""

import json
from pathlib import Path

import pytest

from sessionhub.config.loader import camel_to_snake, load_config, save_config, snake_to_camel
from sessionhub.config.schema import Config


def test_defaults() -> None:
    config = Config()

    assert config.sessions.session_timeout_s == 24 * 60 * 60
    assert config.sessions.unfinished_timeout_s == 15 * 60
    assert config.sessions.anti_automation_window_ms == 120_000
    assert config.supervisor.health_check_interval_s == 300
    assert config.engine.init_timeout_s == 45.0
    assert config.engine.fallback_init_timeout_s == 20.0
    assert config.transcode.bitrate_kbps == 128
    assert config.transcode.timeout_s == 60.0
    assert config.fallback_path is None


def test_derived_paths(tmp_path: Path) -> None:
    config = Config.model_validate({"sessions": {"data_dir": str(tmp_path)}})

    assert config.sessions_path == tmp_path / "sessions"
    assert config.audio_cache_path == tmp_path / "audio_cache"


def test_load_camel_case_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "engine": {"bridgeUrl": "ws://bridge:4000", "initTimeoutS": 30},
        "transcode": {"ttlS": 600, "cacheDir": str(tmp_path / "cache")},
    }))

    config = load_config(path)

    assert config.engine.bridge_url == "ws://bridge:4000"
    assert config.engine.init_timeout_s == 30
    assert config.transcode.ttl_s == 600
    assert config.audio_cache_path == tmp_path / "cache"


def test_invalid_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert load_config(path).engine.bridge_url == "ws://localhost:3001"


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "absent.json").gateway.port == 3000


def test_save_writes_camel_case(tmp_path: Path) -> None:
    config = Config()
    config.engine.bridge_token = "secret"

    path = save_config(config, tmp_path / "nested" / "config.json")
    data = json.loads(path.read_text())

    assert data["engine"]["bridgeToken"] == "secret"
    assert "antiAutomationWindowMs" in data["sessions"]
    assert load_config(path).engine.bridge_token == "secret"


def test_environment_overrides_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SESSIONHUB_ENGINE__BRIDGE_URL", "ws://env:9000")

    assert Config().engine.bridge_url == "ws://env:9000"


def test_key_conversion() -> None:
    assert camel_to_snake("antiAutomationWindowMs") == "anti_automation_window_ms"
    assert snake_to_camel("health_check_interval_s") == "healthCheckIntervalS"
