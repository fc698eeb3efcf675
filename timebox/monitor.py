"""Background monitor that promotes and retires scheduled activities.

While the process is in the foreground two poll loops run: a promotion scan
every 30 seconds and a coarser retirement scan every 60 seconds. In the
background the loops stop and the notification scheduler is asked to wake
the process near window boundaries instead.

The monitor only touches ids it holds in the ownership table. Anything the
session timer owns is left alone.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from timebox.config import MonitorSettings
from timebox.errors import StoreReadFailed
from timebox.models import (
    ACTION_PROMOTE,
    ACTION_RETIRE,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    Activity,
    CancelNotification,
    NotificationPayload,
    ProgressSnapshot,
    RunHook,
    ScheduleNotification,
    SinkBegin,
    SinkEnd,
    notification_id,
)
from timebox.outbox import Outbox
from timebox.ownership import OWNER_MONITOR, OwnershipTable
from timebox.periodic import Handle, LoopScheduler, Scheduler
from timebox.reconciler import elapsed_seconds, is_within_window, remaining_seconds
from timebox.store import (
    ActivityStore,
    Predicate,
    SortKey,
    by_id,
    by_planned_start,
    due_scheduled,
    fetch_bounded,
    upcoming_scheduled,
)
from timebox.timer import utc_now

logger = logging.getLogger(__name__)

REASON_GONE = "deleted"
REASON_FINISHED = "completed elsewhere"
REASON_WITHDRAWN = "no longer active"
REASON_EXPIRED = "window passed"
REASON_WAKEUP = "retire wake-up"


class ScheduledActivityMonitor:
    def __init__(
        self,
        store: ActivityStore,
        ownership: OwnershipTable,
        outbox: Outbox,
        settings: MonitorSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
        scheduler: Scheduler | None = None,
        store_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.ownership = ownership
        self.outbox = outbox
        self.settings = settings or MonitorSettings()
        self._clock = clock
        self._scheduler = scheduler or LoopScheduler()
        self.store_timeout = store_timeout
        self.foreground = False
        self._promote_loop: Optional[Handle] = None
        self._retire_loop: Optional[Handle] = None

    # ── Lifecycle ──

    async def enter_foreground(self) -> None:
        """Scan immediately, then poll on both intervals."""
        self.foreground = True
        await self.scan_for_promotions()
        await self.scan_for_retirements()
        self._start_polling()

    async def enter_background(self) -> None:
        self.foreground = False
        self.stop()
        await self.schedule_wakeups()

    def stop(self) -> None:
        for loop in (self._promote_loop, self._retire_loop):
            if loop is not None:
                loop.cancel()
        self._promote_loop = None
        self._retire_loop = None

    @property
    def polling(self) -> bool:
        return self._promote_loop is not None

    def _start_polling(self) -> None:
        self.stop()
        self._promote_loop = self._scheduler.every(
            self.settings.promote_interval_seconds, self.scan_for_promotions, name="timebox-promote-scan"
        )
        self._retire_loop = self._scheduler.every(
            self.settings.retire_interval_seconds, self.scan_for_retirements, name="timebox-retire-scan"
        )

    # ── Manual registration ──

    def register(self, activity_id: str) -> bool:
        """Mark an id as handled so scans leave it alone."""
        return self.ownership.try_claim(activity_id, OWNER_MONITOR)

    def unregister(self, activity_id: str) -> bool:
        return self.ownership.release(activity_id, OWNER_MONITOR)

    def is_tracking(self, activity_id: str) -> bool:
        return self.ownership.owner_of(activity_id) == OWNER_MONITOR

    # ── Promotion ──

    async def scan_for_promotions(self) -> list[str]:
        now = self._clock()
        self.outbox.retry_failed_saves()
        try:
            candidates = await self._fetch(due_scheduled(now), by_planned_start)
        except StoreReadFailed as e:
            logger.warning("Promotion scan skipped: %s", e)
            return []
        promoted = self.promote_candidates(candidates, now)
        if promoted:
            logger.info("Promotion scan promoted %d activity(ies)", len(promoted))
        return promoted

    def promote_candidates(self, candidates: Iterable[Activity], now: datetime) -> list[str]:
        return [a.id for a in candidates if self.promote(a, now)]

    def promote(self, activity: Activity, now: datetime) -> bool:
        """Promote one due activity and open its progress channel."""
        if activity.is_finished or activity.status not in (STATUS_SCHEDULED, STATUS_ACTIVE):
            return False
        if self.ownership.is_suppressed(activity.id, now):
            logger.debug("Skipping %s: stopped by the user for this window", activity.id)
            return False
        if not is_within_window(activity.planned_start, activity.planned_duration_minutes, now):
            logger.debug("Skipping %s: outside its window", activity.id)
            return False
        if activity.id in self.ownership:
            logger.debug("Skipping %s: already handled by %s", activity.id, self.ownership.owner_of(activity.id))
            return False
        remaining = remaining_seconds(activity.planned_start, activity.planned_duration_minutes, now)
        if remaining <= 0:
            return False
        if not self.ownership.try_claim(activity.id, OWNER_MONITOR):
            return False

        if activity.status == STATUS_SCHEDULED:
            if activity.actual_start is None:
                activity.actual_start = activity.planned_start
            activity.transition(STATUS_ACTIVE, now)
            self.outbox.save(activity)

        snapshot = ProgressSnapshot.compute(
            activity.id,
            elapsed_seconds(activity.planned_start, activity.planned_duration_minutes, now),
            activity.total_seconds,
        )
        self.outbox.put(SinkBegin(activity.id, activity.title, activity.total_seconds, snapshot))
        self.outbox.put(ScheduleNotification(NotificationPayload(
            activity_id=activity.id,
            action=ACTION_RETIRE,
            fire_at=activity.planned_end,
            title="Task complete",
            body=f"'{activity.title}' has finished",
        )))
        self.outbox.put(RunHook("on_activity_promote", {
            "activityId": activity.id,
            "title": activity.title,
            "remainingSeconds": int(remaining),
        }))
        logger.info("Promoted %s (%s) with %ds remaining", activity.id, activity.title, int(remaining))
        return True

    # ── Retirement ──

    async def scan_for_retirements(self) -> list[str]:
        now = self._clock()
        self.outbox.retry_failed_saves()
        self.ownership.prune_suppressions(now)
        tracked = self.ownership.tracked_by(OWNER_MONITOR)
        try:
            records = await self._fetch(
                lambda a: a.id in tracked or a.is_finished or a.status == STATUS_ACTIVE
            )
        except StoreReadFailed as e:
            logger.warning("Retirement scan skipped: %s", e)
            return []
        return self.retire_candidates(records, now, tracked)

    def retire_candidates(
        self,
        records: Iterable[Activity],
        now: datetime,
        tracked: set[str] | None = None,
    ) -> list[str]:
        """Retire monitor-held ids the records show as finished, gone or expired.

        *tracked* limits the decision to ids that were held when *records* were
        fetched; anything promoted since is judged on the next scan.
        """
        by_id_map = {a.id: a for a in records}
        held = self.ownership.tracked_by(OWNER_MONITOR)
        if tracked is not None:
            held &= tracked
        retired = []
        for activity_id in sorted(held):
            activity = by_id_map.get(activity_id)
            if activity is None:
                reason = REASON_GONE
            elif activity.is_finished:
                reason = REASON_FINISHED
            elif activity.status != STATUS_ACTIVE:
                reason = REASON_WITHDRAWN
            elif now > activity.planned_end:
                reason = REASON_EXPIRED
            else:
                continue
            if self.retire(activity_id, now, activity, reason):
                retired.append(activity_id)

        for activity in by_id_map.values():
            if (
                activity.status == STATUS_ACTIVE
                and activity.id not in self.ownership
                and activity.id not in retired
                and now > activity.planned_end
                and self._close_out(activity, now)
            ):
                retired.append(activity.id)
        return retired

    def retire(
        self,
        activity_id: str,
        now: datetime,
        activity: Activity | None = None,
        reason: str = REASON_EXPIRED,
    ) -> bool:
        """Close the progress channel of a tracked id. Repeated calls are no-ops."""
        if not self.ownership.release(activity_id, OWNER_MONITOR):
            return False
        self.outbox.put(SinkEnd(activity_id))
        self.outbox.put(CancelNotification(notification_id(ACTION_RETIRE, activity_id)))
        if activity is not None and reason in (REASON_EXPIRED, REASON_WAKEUP):
            self._close_out(activity, now)
        self.outbox.put(RunHook("on_activity_retire", {"activityId": activity_id, "reason": reason}))
        logger.info("Retired %s (%s)", activity_id, reason)
        return True

    def _close_out(self, activity: Activity, now: datetime) -> bool:
        """Mark an unattended activity whose window ran out as completed."""
        if activity.status != STATUS_ACTIVE or not self.settings.complete_on_retire:
            return False
        activity.transition(STATUS_COMPLETED, now)
        self.outbox.save(activity)
        logger.info("Closed out %s after its window ended", activity.id)
        return True

    # ── Wake-ups ──

    async def schedule_wakeups(self) -> int:
        """Ask the platform to wake us when upcoming activities start."""
        now = self._clock()
        try:
            upcoming = await self._fetch(upcoming_scheduled(now), by_planned_start)
        except StoreReadFailed as e:
            logger.warning("Could not schedule wake-ups: %s", e)
            return 0
        for activity in upcoming:
            self.outbox.put(ScheduleNotification(NotificationPayload(
                activity_id=activity.id,
                action=ACTION_PROMOTE,
                fire_at=activity.planned_start,
                title="Time to focus",
                body=f"Starting '{activity.title}'",
            )))
        logger.info("Scheduled wake-ups for %d upcoming activity(ies)", len(upcoming))
        return len(upcoming)

    async def handle_notification(self, payload: NotificationPayload) -> bool:
        """Act on a delivered wake-up for a single activity."""
        now = self._clock()
        try:
            found = await self._fetch(by_id(payload.activity_id))
        except StoreReadFailed as e:
            logger.warning("Wake-up for %s ignored: %s", payload.activity_id, e)
            return False
        activity = found[0] if found else None

        if payload.action == ACTION_PROMOTE:
            if activity is None:
                logger.info("Wake-up for unknown activity %s", payload.activity_id)
                return False
            return self.promote(activity, now)
        if payload.action == ACTION_RETIRE:
            if self.is_tracking(payload.activity_id):
                return self.retire(payload.activity_id, now, activity, REASON_WAKEUP)
            if activity is not None and activity.id not in self.ownership and now > activity.planned_end:
                return self._close_out(activity, now)
            return False
        logger.warning("Unknown wake-up action %r for %s", payload.action, payload.activity_id)
        return False

    async def _fetch(self, predicate: Predicate | None, sort_key: SortKey | None = None) -> list[Activity]:
        return await fetch_bounded(self.store, predicate, sort_key, self.store_timeout)
