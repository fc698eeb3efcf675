"""Runtime configuration, read from ``timebox.yaml`` in the workspace."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from timebox.fileio import read_yaml, write_yaml
from timebox.workspace import config_path, workspace_root

VALID_SINKS = {"file", "hooks", "none"}


def _positive(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass(slots=True)
class TimerSettings:
    broadcast_every_seconds: int = 5
    completion_grace_seconds: float = 2.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TimerSettings:
        return cls(
            broadcast_every_seconds=int(_positive(d.get("broadcast_every_seconds"), 5)),
            completion_grace_seconds=_positive(d.get("completion_grace_seconds"), 2.0),
        )


@dataclass(slots=True)
class MonitorSettings:
    promote_interval_seconds: float = 30.0
    retire_interval_seconds: float = 60.0
    complete_on_retire: bool = True

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MonitorSettings:
        return cls(
            promote_interval_seconds=_positive(d.get("promote_interval_seconds"), 30.0),
            retire_interval_seconds=_positive(d.get("retire_interval_seconds"), 60.0),
            complete_on_retire=bool(d.get("complete_on_retire", True)),
        )


@dataclass(slots=True)
class Settings:
    """Everything the service reads at construction time."""

    timezone: str = "UTC"
    log_level: str = "INFO"
    progress_sink: str = "file"
    store_timeout_seconds: float = 5.0
    hook_timeout_seconds: float = 30.0
    timer: TimerSettings = field(default_factory=TimerSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        sink = str(d.get("progress_sink", "file")).strip().lower()
        store = d.get("store") if isinstance(d.get("store"), dict) else {}
        hooks = d.get("hooks") if isinstance(d.get("hooks"), dict) else {}
        timer = d.get("timer") if isinstance(d.get("timer"), dict) else {}
        monitor = d.get("monitor") if isinstance(d.get("monitor"), dict) else {}
        return cls(
            timezone=str(d.get("timezone", "UTC")),
            log_level=str(d.get("log_level", "INFO")).upper(),
            progress_sink=sink if sink in VALID_SINKS else "file",
            store_timeout_seconds=_positive(store.get("timeout_seconds"), 5.0),
            hook_timeout_seconds=_positive(hooks.get("timeout_seconds"), 30.0),
            timer=TimerSettings.from_dict(timer),
            monitor=MonitorSettings.from_dict(monitor),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "log_level": self.log_level,
            "progress_sink": self.progress_sink,
            "store": {"timeout_seconds": self.store_timeout_seconds},
            "hooks": {"timeout_seconds": self.hook_timeout_seconds},
            "timer": {
                "broadcast_every_seconds": self.timer.broadcast_every_seconds,
                "completion_grace_seconds": self.timer.completion_grace_seconds,
            },
            "monitor": {
                "promote_interval_seconds": self.monitor.promote_interval_seconds,
                "retire_interval_seconds": self.monitor.retire_interval_seconds,
                "complete_on_retire": self.monitor.complete_on_retire,
            },
        }


def load_settings(root: Path | None = None) -> Settings:
    if root is None:
        root = workspace_root()
    return Settings.from_dict(read_yaml(config_path(root)))


def write_default_settings(root: Path | None = None) -> Path:
    """Create timebox.yaml with defaults unless one already exists."""
    path = config_path(root)
    if not path.exists():
        write_yaml(path, Settings().to_dict())
    return path
