"""The focus service: one object per process that wires everything together.

:class:`FocusService` owns the ownership table, the outbox and its
dispatcher, the session timer and the scheduled-activity monitor. All of
its methods must run on the event loop it was started on; the HTTP API and
the CLI go through it and never touch the parts directly.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from timebox import activities
from timebox.config import Settings, load_settings
from timebox.errors import ActivityNotFound, InvalidTransition, StoreReadFailed
from timebox.models import (
    ACTION_PROMOTE,
    ACTION_RETIRE,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_PAUSED,
    Activity,
    CancelNotification,
    NotificationPayload,
    ScheduleNotification,
    notification_id,
)
from timebox.monitor import ScheduledActivityMonitor
from timebox.outbox import Dispatcher, Outbox
from timebox.ownership import OWNER_MONITOR, OWNER_TIMER, OwnershipTable
from timebox.periodic import Scheduler
from timebox.sinks import FileNotificationScheduler, NotificationScheduler, ProgressSink, build_progress_sink
from timebox.store import ActivityStore, JsonActivityStore, Predicate, by_id, fetch_bounded, status_in
from timebox.timer import STATE_ACTIVE, STATE_PAUSED, SessionTimer
from timebox.workspace import workspace_root, zone_named

logger = logging.getLogger(__name__)

REASON_CANCELLED = "cancelled"


class FocusService:
    def __init__(
        self,
        root: Path | None = None,
        settings: Settings | None = None,
        store: ActivityStore | None = None,
        sink: ProgressSink | None = None,
        notifier: NotificationScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.root = root if root is not None else workspace_root()
        self.settings = settings or load_settings(self.root)
        self.store = store if store is not None else JsonActivityStore(self.root)
        if sink is None:
            sink = build_progress_sink(self.settings, self.root)
        if notifier is None:
            notifier = FileNotificationScheduler(self.root)
        if clock is None:
            zone = zone_named(self.settings.timezone)
            clock = lambda: datetime.now(zone)  # noqa: E731
        self._clock = clock

        self.ownership = OwnershipTable()
        self.outbox = Outbox()
        self.dispatcher = Dispatcher(
            self.outbox,
            self.store,
            sink,
            notifier,
            root=self.root,
            store_timeout=self.settings.store_timeout_seconds,
            hook_timeout=self.settings.hook_timeout_seconds,
        )
        self.timer = SessionTimer(self.ownership, self.outbox, self.settings.timer, clock, scheduler)
        self.monitor = ScheduledActivityMonitor(
            self.store,
            self.ownership,
            self.outbox,
            self.settings.monitor,
            clock,
            scheduler,
            store_timeout=self.settings.store_timeout_seconds,
        )
        self.running = False

    # ── Lifecycle ──

    async def start(self) -> Optional[Activity]:
        """Start delivering events, recover a leftover session and begin polling.

        Returns the recovered activity, if any.
        """
        if self.running:
            return None
        self.dispatcher.start()
        try:
            live = await self._fetch(status_in(STATUS_ACTIVE, STATUS_PAUSED))
        except StoreReadFailed as e:
            logger.warning("Could not look for a session to recover: %s", e)
            live = []
        recovered = self.timer.recover(live)
        self.running = True
        await self.enter_foreground()
        logger.info("Focus service started")
        return recovered

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self.timer.halt()
        self.monitor.stop()
        await self.dispatcher.stop()
        logger.info("Focus service stopped")

    async def flush(self) -> int:
        """Deliver everything queued so far without waiting for the dispatcher."""
        return await self.dispatcher.flush()

    async def enter_foreground(self) -> None:
        current = self.timer.current
        if current is not None:
            self.outbox.put(CancelNotification(notification_id(ACTION_RETIRE, current.id)))
        self.timer.reconcile()
        await self.monitor.enter_foreground()

    async def enter_background(self) -> None:
        """Stop polling and leave wake-ups behind for the platform to deliver."""
        await self.monitor.enter_background()
        current = self.timer.current
        if current is not None and self.timer.state == STATE_ACTIVE:
            self.outbox.put(ScheduleNotification(NotificationPayload(
                activity_id=current.id,
                action=ACTION_RETIRE,
                fire_at=self._clock() + timedelta(seconds=self.timer.time_remaining_seconds),
                title="Task complete",
                body=f"'{current.title}' has finished",
            )))

    @property
    def foreground(self) -> bool:
        return self.monitor.foreground

    # ── Session control ──

    async def start_activity(self, activity_id: str, reset_progress: bool = False) -> Activity:
        current = self.timer.current
        if current is not None and current.id == activity_id:
            activity = current
        else:
            activity = await self._get(activity_id)
        self._check(self.timer.start(activity, reset_progress=reset_progress))
        return activity

    def pause(self) -> None:
        self._check(self.timer.pause())

    def resume(self) -> None:
        self._check(self.timer.resume())

    def complete(self) -> None:
        self._check(self.timer.complete())

    def stop_session(self) -> None:
        self._check(self.timer.stop())

    async def cancel_activity(self, activity_id: str) -> Activity:
        """Withdraw an activity wherever it is: timed, tracked or still queued."""
        current = self.timer.current
        if current is not None and current.id == activity_id and self.timer.state in (STATE_ACTIVE, STATE_PAUSED):
            self._check(self.timer.cancel())
            return current

        activity = await self._get(activity_id)
        if self.ownership.owner_of(activity_id) == OWNER_TIMER:
            raise InvalidTransition("cancel", "completing", f"activity {activity_id}")
        if activity.status == STATUS_CANCELLED or not activity.can_transition(STATUS_CANCELLED):
            raise InvalidTransition("cancel", activity.status, f"activity {activity_id}")
        now = self._clock()
        if self.ownership.owner_of(activity_id) == OWNER_MONITOR:
            self.monitor.retire(activity_id, now, activity, REASON_CANCELLED)
        activity.transition(STATUS_CANCELLED, now)
        self.ownership.clear_suppression(activity_id)
        self.outbox.save(activity)
        self.outbox.put(CancelNotification(notification_id(ACTION_PROMOTE, activity_id)))
        logger.info("Cancelled %s", activity_id)
        return activity

    async def handle_notification(self, payload: NotificationPayload) -> bool:
        current = self.timer.current
        if current is not None and current.id == payload.activity_id:
            if payload.action == ACTION_RETIRE:
                return self.timer.reconcile()
            logger.debug("Wake-up for %s ignored: already being timed", payload.activity_id)
            return False
        return await self.monitor.handle_notification(payload)

    # ── Scheduling ──

    async def list_activities(self, status: str | None = None) -> list[Activity]:
        await self.flush()
        return await asyncio.to_thread(activities.list_activities, self.store, status)

    async def create_activity(self, data: dict[str, Any]) -> tuple[Activity | None, list[str]]:
        now = self._clock()
        activity, errors = await asyncio.to_thread(activities.create_activity, self.store, data, now)
        if activity is not None:
            logger.info("Scheduled %s (%s) at %s", activity.id, activity.title, activity.planned_start)
            self._wake_up_for(activity, now)
        return activity, errors

    async def reschedule_activity(self, activity_id: str, updates: dict[str, Any]) -> tuple[Activity | None, list[str]]:
        await self.flush()
        now = self._clock()
        activity, errors = await asyncio.to_thread(
            activities.reschedule_activity, self.store, activity_id, updates, now
        )
        if activity is not None:
            self.outbox.put(CancelNotification(notification_id(ACTION_PROMOTE, activity_id)))
            self.ownership.clear_suppression(activity_id)
            self._wake_up_for(activity, now)
        return activity, errors

    async def delete_activity(self, activity_id: str) -> bool:
        if self.ownership.owner_of(activity_id) == OWNER_TIMER:
            raise InvalidTransition("delete", "being timed", f"activity {activity_id}")
        await self.flush()
        deleted = await asyncio.to_thread(activities.delete_activity, self.store, activity_id)
        if deleted:
            self.monitor.retire(activity_id, self._clock(), reason=REASON_CANCELLED)
            self.ownership.clear_suppression(activity_id)
            self.outbox.put(CancelNotification(notification_id(ACTION_PROMOTE, activity_id)))
        return deleted

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "foreground": self.foreground,
            "session": self.timer.status(),
            "tracked": sorted(self.ownership.tracked_by(OWNER_MONITOR)),
            "failedSaves": sorted(self.outbox.failed_saves),
            "pendingEvents": len(self.outbox),
        }

    # ── Internals ──

    def _wake_up_for(self, activity: Activity, now: datetime) -> None:
        if self.foreground or activity.planned_start <= now:
            return
        self.outbox.put(ScheduleNotification(NotificationPayload(
            activity_id=activity.id,
            action=ACTION_PROMOTE,
            fire_at=activity.planned_start,
            title="Time to focus",
            body=f"Starting '{activity.title}'",
        )))

    async def _get(self, activity_id: str) -> Activity:
        # Reads must see writes this service has already queued.
        await self.flush()
        found = await self._fetch(by_id(activity_id))
        if not found:
            raise ActivityNotFound(activity_id)
        return found[0]

    async def _fetch(self, predicate: Predicate) -> list[Activity]:
        return await fetch_bounded(self.store, predicate, None, self.settings.store_timeout_seconds)

    def _check(self, accepted: bool) -> None:
        if not accepted:
            raise self.timer.last_rejection or InvalidTransition("change the session", self.timer.state)
