"""Tests for timebox/models.py — typed data model."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import T0, make_activity
from timebox.errors import InvalidTransition
from timebox.models import (
    PHASE_PAUSED,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PAUSED,
    STATUS_SCHEDULED,
    Activity,
    NotificationPayload,
    ProgressSnapshot,
    notification_id,
    parse_timestamp,
)


def test_activity_roundtrip():
    activity = make_activity(T0, 45, title="Review", task_type="study")
    activity.transition(STATUS_ACTIVE, T0 + timedelta(minutes=1))
    data = activity.to_dict()
    assert data["plannedStart"] == "2026-03-02T09:00:00+00:00"
    assert data["plannedDurationMinutes"] == 45
    assert data["taskType"] == "study"

    restored = Activity.from_dict(data)
    assert restored == activity


def test_activity_from_dict_defaults():
    activity = Activity.from_dict({"id": "a1", "plannedStart": "2026-03-02T09:00:00"})
    assert activity.planned_start.tzinfo is not None
    assert activity.planned_duration_minutes == 25
    assert activity.status == STATUS_SCHEDULED
    assert not activity.is_completed


def test_activity_from_dict_requires_start():
    with pytest.raises(ValueError):
        Activity.from_dict({"id": "a1"})


def test_planned_end_and_total():
    activity = make_activity(T0, 25)
    assert activity.planned_end == T0 + timedelta(minutes=25)
    assert activity.total_seconds == 1500


def test_transitions():
    activity = make_activity(T0)
    activity.transition(STATUS_ACTIVE, T0)
    assert activity.actual_start == T0
    activity.transition(STATUS_PAUSED, T0 + timedelta(minutes=1))
    activity.transition(STATUS_ACTIVE, T0 + timedelta(minutes=2))
    assert activity.actual_start == T0
    activity.transition(STATUS_COMPLETED, T0 + timedelta(minutes=3))
    assert activity.is_completed
    assert activity.is_finished
    assert activity.updated_at == T0 + timedelta(minutes=3)

    with pytest.raises(InvalidTransition):
        activity.transition(STATUS_ACTIVE, T0)


def test_completed_and_cancelled_are_terminal():
    for status in (STATUS_COMPLETED, STATUS_CANCELLED):
        activity = make_activity(T0, status=status)
        assert not activity.can_transition(STATUS_SCHEDULED)
        assert activity.can_transition(status)


def test_unknown_status_rejected():
    with pytest.raises(InvalidTransition, match="unknown status"):
        make_activity(T0).transition("done", T0)


def test_snapshot_compute_clamps():
    snap = ProgressSnapshot.compute("a1", 2000, 1500)
    assert snap.progress_fraction == 1.0
    assert snap.time_remaining_seconds == 0

    snap = ProgressSnapshot.compute("a1", 300, 1200, phase=PHASE_PAUSED, is_active=False)
    assert snap.progress_fraction == 0.25
    assert snap.to_dict() == {
        "activityId": "a1",
        "timeRemainingSeconds": 900,
        "progressFraction": 0.25,
        "phase": "paused",
        "isActive": False,
    }


def test_notification_payload():
    payload = NotificationPayload("a1", "retire", T0, title="Done")
    assert payload.identifier == notification_id("retire", "a1") == "timebox_retire_a1"
    restored = NotificationPayload.from_dict(payload.to_dict())
    assert restored == payload


def test_parse_timestamp():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("2026-03-02T09:00:00").tzinfo == timezone.utc
    aware = datetime(2026, 3, 2, 9, tzinfo=timezone(timedelta(hours=2)))
    assert parse_timestamp(aware) is aware
