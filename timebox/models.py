"""Typed dataclasses for the Timebox data model.

Persisted models use from_dict/to_dict for JSON serialization.
camelCase in JSON is mapped to snake_case in Python.
Unknown keys are ignored; missing keys use defaults.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from timebox.errors import InvalidTransition


# ── Status & phase vocabulary ─────────────────────────────────


STATUS_SCHEDULED = "scheduled"
STATUS_ACTIVE = "active"
STATUS_PAUSED = "paused"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = {
    STATUS_SCHEDULED,
    STATUS_ACTIVE,
    STATUS_PAUSED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
}

# Monotonic, except active <-> paused and the "return to queue" performed by stop().
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    STATUS_SCHEDULED: {STATUS_ACTIVE, STATUS_CANCELLED},
    STATUS_ACTIVE: {STATUS_PAUSED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_SCHEDULED},
    STATUS_PAUSED: {STATUS_ACTIVE, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_SCHEDULED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}

PHASE_FOCUS = "focus"
PHASE_PAUSED = "paused"
PHASE_COMPLETED = "completed"

ACTION_PROMOTE = "promote"
ACTION_RETIRE = "retire"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


# ── Activity ──────────────────────────────────────────────────


@dataclass
class Activity:
    """A schedulable unit of focused work with a planned window."""

    planned_start: datetime
    planned_duration_minutes: int
    title: str = ""
    task_type: str = "work"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = STATUS_SCHEDULED
    actual_start: datetime | None = None
    updated_at: datetime | None = None
    is_completed: bool = False

    @property
    def planned_end(self) -> datetime:
        return self.planned_start + timedelta(minutes=self.planned_duration_minutes)

    @property
    def total_seconds(self) -> int:
        return self.planned_duration_minutes * 60

    @property
    def is_finished(self) -> bool:
        return self.is_completed or self.status == STATUS_COMPLETED

    def can_transition(self, new_status: str) -> bool:
        return new_status == self.status or new_status in ALLOWED_TRANSITIONS.get(self.status, set())

    def transition(self, new_status: str, now: datetime) -> None:
        """Move to *new_status*, keeping is_completed and updated_at in step."""
        if new_status not in VALID_STATUSES:
            raise InvalidTransition(f"set status {new_status!r}", self.status, "unknown status")
        if not self.can_transition(new_status):
            raise InvalidTransition(f"move to {new_status}", self.status, f"activity {self.id}")
        self.status = new_status
        self.is_completed = new_status == STATUS_COMPLETED
        if new_status == STATUS_ACTIVE and self.actual_start is None:
            self.actual_start = now
        self.updated_at = now

    def touch(self, now: datetime) -> None:
        self.updated_at = now

    def copy(self) -> Activity:
        return Activity.from_dict(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Activity:
        status = str(d.get("status", STATUS_SCHEDULED)).strip().lower() or STATUS_SCHEDULED
        planned_start = parse_timestamp(d.get("plannedStart", d.get("planned_start")))
        if planned_start is None:
            raise ValueError("Activity record is missing plannedStart")
        return cls(
            id=str(d.get("id") or uuid.uuid4().hex),
            title=str(d.get("title", "")),
            task_type=str(d.get("taskType", d.get("task_type", "work")) or "work"),
            planned_start=planned_start,
            planned_duration_minutes=int(
                d.get("plannedDurationMinutes", d.get("planned_duration_minutes", 25))
            ),
            status=status,
            actual_start=parse_timestamp(d.get("actualStart", d.get("actual_start"))),
            updated_at=parse_timestamp(d.get("updatedAt", d.get("updated_at"))),
            is_completed=bool(d.get("isCompleted", d.get("is_completed", status == STATUS_COMPLETED))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "taskType": self.task_type,
            "plannedStart": format_timestamp(self.planned_start),
            "plannedDurationMinutes": self.planned_duration_minutes,
            "status": self.status,
            "actualStart": format_timestamp(self.actual_start),
            "updatedAt": format_timestamp(self.updated_at),
            "isCompleted": self.is_completed,
        }


# ── Progress ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ProgressSnapshot:
    activity_id: str
    time_remaining_seconds: int
    progress_fraction: float
    phase: str = PHASE_FOCUS
    is_active: bool = True

    @classmethod
    def compute(
        cls,
        activity_id: str,
        elapsed_seconds: int,
        total_seconds: int,
        phase: str = PHASE_FOCUS,
        is_active: bool = True,
    ) -> ProgressSnapshot:
        if total_seconds <= 0:
            fraction = 1.0
        else:
            fraction = min(1.0, max(0.0, elapsed_seconds / total_seconds))
        return cls(
            activity_id=activity_id,
            time_remaining_seconds=max(0, total_seconds - elapsed_seconds),
            progress_fraction=fraction,
            phase=phase,
            is_active=is_active,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "activityId": self.activity_id,
            "timeRemainingSeconds": self.time_remaining_seconds,
            "progressFraction": round(self.progress_fraction, 4),
            "phase": self.phase,
            "isActive": self.is_active,
        }


# ── Notifications ─────────────────────────────────────────────


def notification_id(action: str, activity_id: str) -> str:
    return f"timebox_{action}_{activity_id}"


@dataclass
class NotificationPayload:
    """A wake-up the platform should deliver near a window boundary."""

    activity_id: str
    action: str  # promote, retire
    fire_at: datetime
    title: str = ""
    body: str = ""

    @property
    def identifier(self) -> str:
        return notification_id(self.action, self.activity_id)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NotificationPayload:
        return cls(
            activity_id=str(d.get("activityId", d.get("activity_id", ""))),
            action=str(d.get("action", "")),
            fire_at=parse_timestamp(d.get("fireAt", d.get("fire_at"))) or datetime.now(timezone.utc),
            title=str(d.get("title", "")),
            body=str(d.get("body", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "activityId": self.activity_id,
            "action": self.action,
            "fireAt": format_timestamp(self.fire_at),
            "title": self.title,
            "body": self.body,
        }


# ── Outbound events ───────────────────────────────────────────


@dataclass(frozen=True)
class SaveActivity:
    record: dict[str, Any]

    @property
    def activity_id(self) -> str:
        return str(self.record.get("id", ""))


@dataclass(frozen=True)
class SinkBegin:
    activity_id: str
    title: str
    total_duration_seconds: int
    snapshot: ProgressSnapshot


@dataclass(frozen=True)
class SinkUpdate:
    snapshot: ProgressSnapshot


@dataclass(frozen=True)
class SinkEnd:
    activity_id: str


@dataclass(frozen=True)
class ScheduleNotification:
    payload: NotificationPayload


@dataclass(frozen=True)
class CancelNotification:
    identifier: str


@dataclass(frozen=True)
class RunHook:
    hook_point: str
    context: dict[str, Any]


OutboundEvent = Union[
    SaveActivity,
    SinkBegin,
    SinkUpdate,
    SinkEnd,
    ScheduleNotification,
    CancelNotification,
    RunHook,
]
