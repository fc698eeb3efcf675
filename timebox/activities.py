"""Activity validation and scheduling helpers for Timebox.

These are used by the CLI and the HTTP API to put activities into the
store. Running sessions are never edited through here: only activities
that are still scheduled can be rescheduled.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from timebox.models import STATUS_SCHEDULED, Activity, parse_timestamp
from timebox.store import ActivityStore, by_planned_start, fetch_one, status_is

MAX_DURATION_MINUTES = 24 * 60
EDITABLE_FIELDS = {"title", "taskType", "task_type", "plannedStart", "planned_start",
                   "plannedDurationMinutes", "planned_duration_minutes"}


# ── Validation ────────────────────────────────────────────────


def validate_activity(data: dict[str, Any], partial: bool = False) -> list[str]:
    """Validate activity input and return a list of errors (empty if valid)."""
    errors = []

    start = data.get("plannedStart", data.get("planned_start"))
    if start is None:
        if not partial:
            errors.append("Missing required field: plannedStart")
    else:
        try:
            parse_timestamp(start)
        except (TypeError, ValueError):
            errors.append(f"Invalid plannedStart: {start!r}")

    duration = data.get("plannedDurationMinutes", data.get("planned_duration_minutes"))
    if duration is None:
        if not partial:
            errors.append("Missing required field: plannedDurationMinutes")
    elif isinstance(duration, bool) or not isinstance(duration, int):
        errors.append("plannedDurationMinutes must be an integer")
    elif duration <= 0 or duration > MAX_DURATION_MINUTES:
        errors.append(f"plannedDurationMinutes must be between 1 and {MAX_DURATION_MINUTES}")

    if not partial and not str(data.get("title", "")).strip():
        errors.append("Missing required field: title")

    return errors


# ── CRUD ──────────────────────────────────────────────────────


def list_activities(store: ActivityStore, status: str | None = None) -> list[Activity]:
    predicate = status_is(status) if status else None
    return store.fetch(predicate, by_planned_start)


def create_activity(store: ActivityStore, data: dict[str, Any], now: datetime) -> tuple[Activity | None, list[str]]:
    """Create and save a new scheduled activity. Returns (activity, errors)."""
    errors = validate_activity(data)
    if errors:
        return None, errors
    activity = Activity(
        title=str(data.get("title", "")).strip(),
        task_type=str(data.get("taskType", data.get("task_type", "work")) or "work"),
        planned_start=parse_timestamp(data.get("plannedStart", data.get("planned_start"))),
        planned_duration_minutes=int(data.get("plannedDurationMinutes", data.get("planned_duration_minutes"))),
        status=STATUS_SCHEDULED,
        updated_at=now,
    )
    store.save(activity)
    return activity, []


def reschedule_activity(
    store: ActivityStore,
    activity_id: str,
    updates: dict[str, Any],
    now: datetime,
) -> tuple[Activity | None, list[str]]:
    """Apply edits to a scheduled activity. Returns (activity, errors)."""
    activity = fetch_one(store, activity_id)
    if activity is None:
        return None, [f"Activity not found: {activity_id}"]
    if activity.status != STATUS_SCHEDULED:
        return None, [f"Only scheduled activities can be edited (status is {activity.status})"]

    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        return None, [f"Cannot edit field(s): {', '.join(sorted(unknown))}"]
    errors = validate_activity(updates, partial=True)
    if errors:
        return None, errors

    if "title" in updates:
        activity.title = str(updates["title"]).strip()
    if "taskType" in updates or "task_type" in updates:
        activity.task_type = str(updates.get("taskType", updates.get("task_type")))
    start = updates.get("plannedStart", updates.get("planned_start"))
    if start is not None:
        activity.planned_start = parse_timestamp(start)
    duration = updates.get("plannedDurationMinutes", updates.get("planned_duration_minutes"))
    if duration is not None:
        activity.planned_duration_minutes = int(duration)
    activity.touch(now)
    store.save(activity)
    return activity, []


def delete_activity(store: ActivityStore, activity_id: str) -> bool:
    return store.delete(activity_id)
