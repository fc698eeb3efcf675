"""Outbound collaborators: progress sinks and the notification scheduler.

These are the only places Timebox talks to the outside world about a
session. They are called exclusively by the outbox dispatcher.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from timebox.config import Settings
from timebox.fileio import read_json, write_json_atomic
from timebox.hooks import PROGRESS_HOOK_POINTS, has_hooks, run_hooks
from timebox.models import NotificationPayload, ProgressSnapshot, format_timestamp
from timebox.workspace import live_session_path, notifications_path, now_local, workspace_root

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    def begin(self, activity_id: str, title: str, total_duration_seconds: int, snapshot: ProgressSnapshot) -> None:
        ...

    def update(self, snapshot: ProgressSnapshot) -> None:
        ...

    def end(self, activity_id: str) -> None:
        ...


class NotificationScheduler(Protocol):
    def schedule_at(self, payload: NotificationPayload) -> None:
        ...

    def cancel(self, identifier: str) -> None:
        ...


# ── Progress sinks ────────────────────────────────────────────


class FileProgressSink:
    """Publishes the live session to ``live_session.json`` for widgets to read.

    Only one session is open at a time: ``begin`` for another id replaces it,
    updates for an id that is not open are dropped, and ``end`` is idempotent.
    A repeated ``begin`` for the open id refreshes it and keeps ``openedAt``.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root if root is not None else workspace_root()
        self.path = live_session_path(self.root)

    def current(self) -> dict[str, Any]:
        return read_json(self.path)

    def begin(self, activity_id: str, title: str, total_duration_seconds: int, snapshot: ProgressSnapshot) -> None:
        existing = self.current()
        opened_at = None
        if existing.get("open"):
            if existing.get("activityId") == activity_id:
                opened_at = existing.get("openedAt")
            else:
                logger.info("Replacing live session %s with %s", existing.get("activityId"), activity_id)
        write_json_atomic(self.path, {
            "open": True,
            "activityId": activity_id,
            "title": title,
            "totalDurationSeconds": total_duration_seconds,
            "openedAt": opened_at or format_timestamp(now_local(self.root)),
            "state": snapshot.to_dict(),
        })

    def update(self, snapshot: ProgressSnapshot) -> None:
        data = self.current()
        if not data.get("open") or data.get("activityId") != snapshot.activity_id:
            logger.debug("No open live session for %s; update dropped", snapshot.activity_id)
            return
        data["state"] = snapshot.to_dict()
        write_json_atomic(self.path, data)

    def end(self, activity_id: str) -> None:
        data = self.current()
        if not data.get("open") or data.get("activityId") != activity_id:
            return
        data["open"] = False
        data["closedAt"] = format_timestamp(now_local(self.root))
        write_json_atomic(self.path, data)


class HookProgressSink:
    """Forwards progress to the on_progress_* hook commands."""

    def __init__(self, root: Path | None = None, timeout: float = 30) -> None:
        self.root = root if root is not None else workspace_root()
        self.timeout = timeout

    def begin(self, activity_id: str, title: str, total_duration_seconds: int, snapshot: ProgressSnapshot) -> None:
        run_hooks("on_progress_begin", {
            "activityId": activity_id,
            "title": title,
            "totalDurationSeconds": total_duration_seconds,
            "state": snapshot.to_dict(),
        }, self.root, self.timeout)

    def update(self, snapshot: ProgressSnapshot) -> None:
        run_hooks("on_progress_update", {"state": snapshot.to_dict()}, self.root, self.timeout)

    def end(self, activity_id: str) -> None:
        run_hooks("on_progress_end", {"activityId": activity_id}, self.root, self.timeout)


def build_progress_sink(settings: Settings, root: Path | None = None) -> ProgressSink | None:
    """Sink selected by ``progress_sink`` in timebox.yaml; None when disabled."""
    if settings.progress_sink == "hooks":
        if not any(has_hooks(point, root) for point in PROGRESS_HOOK_POINTS):
            logger.warning("progress_sink is 'hooks' but hooks.yaml has no on_progress_* commands")
        return HookProgressSink(root, settings.hook_timeout_seconds)
    if settings.progress_sink == "file":
        return FileProgressSink(root)
    return None


# ── Notifications ─────────────────────────────────────────────


class FileNotificationScheduler:
    """Keeps pending wake-ups in ``notifications.json``.

    The platform agent that actually delivers notifications reads this file;
    when one fires it posts the payload back to the service.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root if root is not None else workspace_root()
        self.path = notifications_path(self.root)

    def pending(self) -> list[NotificationPayload]:
        data = read_json(self.path)
        return [NotificationPayload.from_dict(p) for p in (data.get("pending") or []) if isinstance(p, dict)]

    def _write(self, payloads: list[NotificationPayload]) -> None:
        payloads.sort(key=lambda p: p.fire_at)
        write_json_atomic(self.path, {"pending": [p.to_dict() for p in payloads]})

    def schedule_at(self, payload: NotificationPayload) -> None:
        payloads = [p for p in self.pending() if p.identifier != payload.identifier]
        payloads.append(payload)
        self._write(payloads)

    def cancel(self, identifier: str) -> None:
        payloads = self.pending()
        remaining = [p for p in payloads if p.identifier != identifier]
        if len(remaining) != len(payloads):
            self._write(remaining)
