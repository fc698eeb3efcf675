"""Tests for timebox/activities.py — validation and scheduling helpers."""

from datetime import timedelta

from conftest import T0, make_activity
from timebox.activities import (
    create_activity,
    delete_activity,
    list_activities,
    reschedule_activity,
    validate_activity,
)
from timebox.models import STATUS_ACTIVE, STATUS_SCHEDULED
from timebox.store import fetch_one


def valid_data(**overrides):
    data = {"title": "Write report", "plannedStart": "2026-03-02T10:00:00+00:00", "plannedDurationMinutes": 50}
    data.update(overrides)
    return data


def test_validate_valid():
    assert validate_activity(valid_data()) == []


def test_validate_missing_fields():
    errors = validate_activity({})
    assert any("plannedStart" in e for e in errors)
    assert any("plannedDurationMinutes" in e for e in errors)
    assert any("title" in e for e in errors)


def test_validate_bad_values():
    assert validate_activity(valid_data(plannedStart="tomorrow-ish"))
    assert validate_activity(valid_data(plannedDurationMinutes=0))
    assert validate_activity(valid_data(plannedDurationMinutes="25"))
    assert validate_activity(valid_data(plannedDurationMinutes=True))
    assert validate_activity(valid_data(plannedDurationMinutes=24 * 60 + 1))


def test_validate_partial():
    assert validate_activity({"title": "x"}, partial=True) == []
    assert validate_activity({"plannedDurationMinutes": -1}, partial=True)


def test_create_activity(store):
    activity, errors = create_activity(store, valid_data(taskType="study"), T0)
    assert errors == []
    assert activity.status == STATUS_SCHEDULED
    assert activity.task_type == "study"
    assert activity.planned_start == T0 + timedelta(hours=1)
    assert activity.updated_at == T0
    assert fetch_one(store, activity.id) is not None


def test_create_invalid_saves_nothing(store):
    activity, errors = create_activity(store, {"title": ""}, T0)
    assert activity is None
    assert errors
    assert store.fetch() == []


def test_list_activities_sorted_and_filtered(store):
    later = make_activity(T0 + timedelta(hours=1), title="later")
    sooner = make_activity(T0, title="sooner", status=STATUS_ACTIVE)
    store.save(later)
    store.save(sooner)
    assert [a.title for a in list_activities(store)] == ["sooner", "later"]
    assert [a.title for a in list_activities(store, STATUS_SCHEDULED)] == ["later"]


def test_reschedule_scheduled_activity(store):
    activity = make_activity(T0)
    store.save(activity)
    updated, errors = reschedule_activity(
        store, activity.id, {"plannedStart": "2026-03-02T11:00:00+00:00", "title": "Moved"}, T0
    )
    assert errors == []
    assert updated.title == "Moved"
    assert fetch_one(store, activity.id).planned_start == T0 + timedelta(hours=2)


def test_reschedule_rejects_running_activity(store):
    activity = make_activity(T0, status=STATUS_ACTIVE)
    store.save(activity)
    updated, errors = reschedule_activity(store, activity.id, {"title": "x"}, T0)
    assert updated is None
    assert "Only scheduled" in errors[0]


def test_reschedule_rejects_unknown_fields(store):
    activity = make_activity(T0)
    store.save(activity)
    updated, errors = reschedule_activity(store, activity.id, {"status": "completed"}, T0)
    assert updated is None
    assert "status" in errors[0]


def test_reschedule_missing(store):
    updated, errors = reschedule_activity(store, "nope", {"title": "x"}, T0)
    assert updated is None
    assert errors == ["Activity not found: nope"]


def test_delete_activity(store):
    activity = make_activity(T0)
    store.save(activity)
    assert delete_activity(store, activity.id)
    assert not delete_activity(store, activity.id)
