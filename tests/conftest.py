"""Shared test fixtures for Timebox tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from timebox.config import Settings
from timebox.models import Activity, NotificationPayload, ProgressSnapshot
from timebox.outbox import Dispatcher, Outbox
from timebox.ownership import OwnershipTable
from timebox.store import MemoryActivityStore

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when


class ManualHandle:
    def __init__(self, kind: str, interval: float, callback: Callable[[], Any], name: str) -> None:
        self.kind = kind
        self.interval = interval
        self.callback = callback
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records every/later requests; tests fire them by name."""

    def __init__(self) -> None:
        self.handles: list[ManualHandle] = []

    def every(self, interval: float, callback: Callable[[], Any], name: str) -> ManualHandle:
        handle = ManualHandle("every", interval, callback, name)
        self.handles.append(handle)
        return handle

    def later(self, delay: float, callback: Callable[[], Any], name: str) -> ManualHandle:
        handle = ManualHandle("later", delay, callback, name)
        self.handles.append(handle)
        return handle

    def active(self, prefix: str = "") -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled and h.name.startswith(prefix)]

    def fire(self, prefix: str) -> list[Any]:
        """Run every live handle whose name starts with *prefix* once."""
        results = []
        for handle in self.active(prefix):
            if handle.kind == "later":
                handle.cancelled = True
            results.append(handle.callback())
        return results


class RecordingSink:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []

    def begin(self, activity_id: str, title: str, total_duration_seconds: int, snapshot: ProgressSnapshot) -> None:
        self.calls.append(("begin", activity_id, snapshot))

    def update(self, snapshot: ProgressSnapshot) -> None:
        self.calls.append(("update", snapshot.activity_id, snapshot))

    def end(self, activity_id: str) -> None:
        self.calls.append(("end", activity_id, None))

    def of(self, kind: str) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == kind]


class RecordingNotifier:
    def __init__(self) -> None:
        self.scheduled: dict[str, NotificationPayload] = {}
        self.cancelled: list[str] = []

    def schedule_at(self, payload: NotificationPayload) -> None:
        self.scheduled[payload.identifier] = payload

    def cancel(self, identifier: str) -> None:
        self.cancelled.append(identifier)
        self.scheduled.pop(identifier, None)


def make_activity(start: datetime = T0, minutes: int = 25, **kwargs: Any) -> Activity:
    kwargs.setdefault("title", "Deep work")
    return Activity(planned_start=start, planned_duration_minutes=minutes, **kwargs)


def events_of(outbox: Outbox, kind: type) -> list[Any]:
    return [e for e in outbox.pending() if isinstance(e, kind)]


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace with a timebox.yaml."""
    root = tmp_path / "workspace"
    root.mkdir(parents=True)
    config = {
        "timezone": "UTC",
        "log_level": "DEBUG",
        "progress_sink": "file",
        "timer": {"broadcast_every_seconds": 5, "completion_grace_seconds": 2},
        "monitor": {"promote_interval_seconds": 30, "retire_interval_seconds": 60},
    }
    (root / "timebox.yaml").write_text(yaml.dump(config, default_flow_style=False), encoding="utf-8")

    os.environ["TIMEBOX_ROOT"] = str(root)
    yield root
    if "TIMEBOX_ROOT" in os.environ:
        del os.environ["TIMEBOX_ROOT"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store() -> MemoryActivityStore:
    return MemoryActivityStore()


@pytest.fixture
def ownership() -> OwnershipTable:
    return OwnershipTable()


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(progress_sink="none")


@pytest.fixture
def dispatcher(outbox, store, sink, notifier, workspace) -> Dispatcher:
    return Dispatcher(outbox, store, sink, notifier, root=workspace, store_timeout=1.0)
