"""Tests for timebox/config.py."""

import yaml

from timebox.config import Settings, load_settings, write_default_settings
from timebox.workspace import get_user_timezone, zone_named


def test_defaults_when_missing(tmp_path):
    settings = load_settings(tmp_path)
    assert settings.timezone == "UTC"
    assert settings.progress_sink == "file"
    assert settings.timer.broadcast_every_seconds == 5
    assert settings.timer.completion_grace_seconds == 2.0
    assert settings.monitor.promote_interval_seconds == 30.0
    assert settings.monitor.retire_interval_seconds == 60.0
    assert settings.monitor.complete_on_retire is True
    assert settings.store_timeout_seconds == 5.0


def test_load_from_workspace(workspace):
    settings = load_settings(workspace)
    assert settings.log_level == "DEBUG"
    assert settings.timer.completion_grace_seconds == 2.0


def test_invalid_values_fall_back():
    settings = Settings.from_dict({
        "progress_sink": "carrier-pigeon",
        "timer": {"broadcast_every_seconds": -3},
        "monitor": {"promote_interval_seconds": "soon"},
        "store": {"timeout_seconds": 0},
    })
    assert settings.progress_sink == "file"
    assert settings.timer.broadcast_every_seconds == 5
    assert settings.monitor.promote_interval_seconds == 30.0
    assert settings.store_timeout_seconds == 5.0


def test_nested_values():
    settings = Settings.from_dict({
        "progress_sink": "Hooks",
        "log_level": "warning",
        "monitor": {"complete_on_retire": False, "retire_interval_seconds": 15},
        "hooks": {"timeout_seconds": 3},
    })
    assert settings.progress_sink == "hooks"
    assert settings.log_level == "WARNING"
    assert settings.monitor.complete_on_retire is False
    assert settings.monitor.retire_interval_seconds == 15.0
    assert settings.hook_timeout_seconds == 3.0


def test_write_default_settings(tmp_path):
    path = write_default_settings(tmp_path)
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert Settings.from_dict(data) == Settings()

    path.write_text("timezone: Europe/Berlin\n", encoding="utf-8")
    write_default_settings(tmp_path)
    assert load_settings(tmp_path).timezone == "Europe/Berlin"


def test_timezone_from_workspace(tmp_path):
    assert get_user_timezone(tmp_path).key == "UTC"
    (tmp_path / "timebox.yaml").write_text("timezone: Asia/Tokyo\n", encoding="utf-8")
    assert get_user_timezone(tmp_path).key == "Asia/Tokyo"
    assert zone_named("Mars/Olympus").key == "UTC"
