"""Tests for the command line interface."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from sessionhub import __version__
from sessionhub.cli.commands import app
from sessionhub.transcode import ffmpeg as ffmpeg_module

runner = CliRunner()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"v{__version__}" in result.output


def test_onboard_writes_default_config(home: Path) -> None:
    result = runner.invoke(app, ["onboard"])

    assert result.exit_code == 0
    assert (home / ".sessionhub" / "config.json").exists()
    assert (home / ".sessionhub" / "sessions").is_dir()


def test_onboard_keeps_existing_config_when_declined(home: Path) -> None:
    config_path = home / ".sessionhub" / "config.json"
    config_path.parent.mkdir(parents=True)
    config_path.write_text("{}")

    result = runner.invoke(app, ["onboard"], input="n\n")

    assert result.exit_code == 0
    assert config_path.read_text() == "{}"


def test_status_reports_missing_ffmpeg(home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ffmpeg_module.shutil, "which", lambda name: None)
    monkeypatch.setattr(ffmpeg_module, "COMMON_FFMPEG_PATHS", [])

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "not found" in result.output
    assert "ws://localhost:3001" in result.output
