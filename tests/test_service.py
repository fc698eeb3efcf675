"""Tests for timebox/service.py — the wired-up focus service."""

import json
from datetime import timedelta

import pytest

from conftest import T0, RecordingNotifier, RecordingSink, make_activity
from timebox.config import Settings
from timebox.errors import ActivityNotFound, InvalidTransition
from timebox.models import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    NotificationPayload,
    notification_id,
)
from timebox.ownership import OWNER_MONITOR
from timebox.service import FocusService
from timebox.sinks import FileProgressSink
from timebox.store import fetch_one
from timebox.timer import STATE_ACTIVE, STATE_COMPLETED, STATE_IDLE, STATE_PAUSED


@pytest.fixture
def service(workspace, store, sink, notifier, clock, scheduler):
    return FocusService(
        root=workspace,
        settings=Settings(),
        store=store,
        sink=sink,
        notifier=notifier,
        clock=clock,
        scheduler=scheduler,
    )


@pytest.mark.asyncio
async def test_start_recovers_interrupted_session(service, store, clock):
    activity = make_activity(T0 - timedelta(minutes=10), 20, status=STATUS_ACTIVE)
    store.save(activity)

    recovered = await service.start()
    try:
        assert recovered.id == activity.id
        assert service.timer.state == STATE_ACTIVE
        assert service.timer.elapsed_seconds == 600
        assert service.monitor.polling
    finally:
        await service.stop()
    assert not service.running


@pytest.mark.asyncio
async def test_full_session_through_service(service, store, sink, scheduler, clock):
    activity, errors = await service.create_activity({
        "title": "Write report",
        "plannedStart": (T0 + timedelta(hours=1)).isoformat(),
        "plannedDurationMinutes": 25,
    })
    assert errors == []
    await service.start()

    await service.start_activity(activity.id, reset_progress=True)
    service.pause()
    assert service.timer.state == STATE_PAUSED
    service.resume()
    for _ in range(1500):
        scheduler.fire("timebox-tick")
    assert service.timer.state == STATE_COMPLETED

    await service.stop()
    assert fetch_one(store, activity.id).status == STATUS_COMPLETED
    assert len(sink.of("begin")) == 1
    terminal = [c for c in sink.of("update") if c[2].phase == "completed"]
    assert len(terminal) == 1


@pytest.mark.asyncio
async def test_session_control_errors(service):
    with pytest.raises(InvalidTransition):
        service.pause()
    with pytest.raises(ActivityNotFound):
        await service.start_activity("missing")


@pytest.mark.asyncio
async def test_stop_session_returns_to_schedule(service, store, clock):
    activity = make_activity(T0, 25)
    store.save(activity)
    clock.advance(minutes=3)
    await service.start_activity(activity.id)
    service.stop_session()
    await service.flush()

    assert service.timer.state == STATE_IDLE
    assert fetch_one(store, activity.id).status == STATUS_SCHEDULED
    assert await service.monitor.scan_for_promotions() == []


@pytest.mark.asyncio
async def test_cancel_scheduled_activity(service, store, notifier):
    activity = make_activity(T0 + timedelta(hours=1))
    store.save(activity)
    cancelled = await service.cancel_activity(activity.id)
    await service.flush()

    assert cancelled.status == STATUS_CANCELLED
    assert fetch_one(store, activity.id).status == STATUS_CANCELLED
    assert notification_id("promote", activity.id) in notifier.cancelled

    with pytest.raises(InvalidTransition):
        await service.cancel_activity(activity.id)
    with pytest.raises(ActivityNotFound):
        await service.cancel_activity("missing")


@pytest.mark.asyncio
async def test_cancel_timed_activity(service, store):
    activity = make_activity(T0)
    store.save(activity)
    await service.start_activity(activity.id)
    await service.cancel_activity(activity.id)
    await service.flush()
    assert service.timer.state == STATE_IDLE
    assert fetch_one(store, activity.id).status == STATUS_CANCELLED


@pytest.mark.asyncio
async def test_cancel_promoted_activity(service, store, sink):
    activity = make_activity(T0 - timedelta(minutes=5), 25)
    store.save(activity)
    await service.monitor.scan_for_promotions()
    await service.flush()
    assert service.ownership.owner_of(activity.id) == OWNER_MONITOR

    await service.cancel_activity(activity.id)
    await service.flush()
    assert activity.id not in service.ownership
    assert sink.of("end") == [("end", activity.id, None)]
    assert fetch_one(store, activity.id).status == STATUS_CANCELLED


@pytest.mark.asyncio
async def test_manual_start_of_promoted_activity(service, store, sink):
    activity = make_activity(T0 - timedelta(minutes=5), 25)
    store.save(activity)
    await service.monitor.scan_for_promotions()
    await service.flush()

    await service.start_activity(activity.id)
    await service.flush()
    assert [c[1] for c in sink.of("begin")] == [activity.id, activity.id]
    assert service.timer.elapsed_seconds == 300


@pytest.mark.asyncio
async def test_live_session_follows_manual_start_after_other_promotions(workspace, store, clock, scheduler):
    service = FocusService(
        root=workspace,
        settings=Settings(),
        store=store,
        sink=FileProgressSink(workspace),
        notifier=RecordingNotifier(),
        clock=clock,
        scheduler=scheduler,
    )
    first = make_activity(T0 - timedelta(minutes=10), 25, title="First")
    second = make_activity(T0 - timedelta(minutes=5), 25, title="Second")
    store.save(first)
    store.save(second)
    assert await service.monitor.scan_for_promotions() == [first.id, second.id]

    await service.start_activity(first.id)
    for _ in range(10):
        scheduler.fire("timebox-tick")
    await service.flush()

    live = json.loads((workspace / "live_session.json").read_text(encoding="utf-8"))
    assert live["open"] is True
    assert live["activityId"] == first.id
    assert live["state"]["timeRemainingSeconds"] == 890


@pytest.mark.asyncio
async def test_delete_timed_activity_refused(service, store):
    activity = make_activity(T0)
    store.save(activity)
    await service.start_activity(activity.id)
    with pytest.raises(InvalidTransition):
        await service.delete_activity(activity.id)


@pytest.mark.asyncio
async def test_background_leaves_wakeups(service, store, notifier, scheduler):
    upcoming = make_activity(T0 + timedelta(hours=2))
    timed = make_activity(T0, 25)
    store.save(upcoming)
    store.save(timed)
    await service.start_activity(timed.id)

    await service.enter_background()
    await service.flush()
    assert not service.foreground
    promote = notifier.scheduled[notification_id("promote", upcoming.id)]
    assert promote.fire_at == upcoming.planned_start
    retire = notifier.scheduled[notification_id("retire", timed.id)]
    assert retire.fire_at == T0 + timedelta(minutes=25)

    await service.enter_foreground()
    await service.flush()
    assert notification_id("retire", timed.id) not in notifier.scheduled


@pytest.mark.asyncio
async def test_create_in_background_schedules_wakeup(service, notifier):
    await service.enter_background()
    activity, _ = await service.create_activity({
        "title": "Later",
        "plannedStart": (T0 + timedelta(hours=3)).isoformat(),
        "plannedDurationMinutes": 30,
    })
    await service.flush()
    assert notification_id("promote", activity.id) in notifier.scheduled


@pytest.mark.asyncio
async def test_retire_wakeup_completes_timed_session(service, store, clock):
    activity = make_activity(T0, 25)
    store.save(activity)
    await service.start_activity(activity.id)
    clock.advance(minutes=26)

    handled = await service.handle_notification(NotificationPayload(activity.id, "retire", activity.planned_end))
    assert handled
    assert service.timer.state == STATE_COMPLETED


def test_status(service):
    status = service.status()
    assert status["running"] is False
    assert status["session"]["state"] == STATE_IDLE
    assert status["tracked"] == []


def test_bad_hook_timeout_does_not_break_construction(workspace):
    (workspace / "hooks.yaml").write_text(
        "on_progress_update:\n  - {command: 'true', timeout: soon}\n", encoding="utf-8"
    )
    service = FocusService(root=workspace, settings=Settings(progress_sink="hooks"))
    assert service.status()["running"] is False
