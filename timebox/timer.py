"""The session timer: owns the one activity being timed right now.

State machine::

    idle ──start──▶ active ◀──resume── paused
                      │  └────pause────▶  │
                      ├──complete──▶ completed ──(grace)──▶ idle
                      ├──stop──────▶ idle   (activity back to "scheduled")
                      └──cancel────▶ idle   (activity "cancelled")

The tick counter is only trusted within one process lifetime. Whenever a
session is started, resumed, recovered or brought back to the foreground,
the elapsed offset is re-derived from the wall clock by the reconciler.

All methods are synchronous and must be called from the event loop that
owns the service. Side effects go through the outbox.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from timebox.config import TimerSettings
from timebox.errors import InvalidTransition
from timebox.models import (
    ACTION_PROMOTE,
    ACTION_RETIRE,
    PHASE_COMPLETED,
    PHASE_FOCUS,
    PHASE_PAUSED,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PAUSED,
    STATUS_SCHEDULED,
    Activity,
    CancelNotification,
    NotificationPayload,
    ProgressSnapshot,
    RunHook,
    ScheduleNotification,
    SinkBegin,
    SinkEnd,
    SinkUpdate,
    notification_id,
)
from timebox.outbox import Outbox
from timebox.ownership import OWNER_MONITOR, OWNER_TIMER, OwnershipTable
from timebox.periodic import Handle, LoopScheduler, Scheduler
from timebox.reconciler import elapsed_minutes, elapsed_seconds, format_clock

logger = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_ACTIVE = "active"
STATE_PAUSED = "paused"
STATE_COMPLETED = "completed"

TICK_SECONDS = 1.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionTimer:
    def __init__(
        self,
        ownership: OwnershipTable,
        outbox: Outbox,
        settings: TimerSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.ownership = ownership
        self.outbox = outbox
        self.settings = settings or TimerSettings()
        self._clock = clock
        self._scheduler = scheduler or LoopScheduler()

        self.current: Optional[Activity] = None
        self.state = STATE_IDLE
        self.elapsed_seconds = 0
        self.completions = 0
        self.last_rejection: Optional[InvalidTransition] = None

        # Wall-clock instant that corresponds to elapsed == 0.
        self._anchor: Optional[datetime] = None
        self._ticker: Optional[Handle] = None
        self._release_handle: Optional[Handle] = None
        self._since_broadcast = 0

    # ── Queries ──

    @property
    def cap_seconds(self) -> int:
        return self.current.total_seconds if self.current else 0

    @property
    def is_ticking(self) -> bool:
        return self._ticker is not None

    @property
    def progress_fraction(self) -> float:
        snap = self.snapshot()
        return snap.progress_fraction if snap else 0.0

    @property
    def time_remaining_seconds(self) -> int:
        snap = self.snapshot()
        return snap.time_remaining_seconds if snap else 0

    def snapshot(self) -> Optional[ProgressSnapshot]:
        if self.current is None:
            return None
        if self.state == STATE_COMPLETED:
            return self._terminal_snapshot()
        phase = PHASE_PAUSED if self.state == STATE_PAUSED else PHASE_FOCUS
        return ProgressSnapshot.compute(
            self.current.id,
            self.elapsed_seconds,
            self.cap_seconds,
            phase=phase,
            is_active=self.state == STATE_ACTIVE,
        )

    def status(self) -> dict[str, Any]:
        snap = self.snapshot()
        return {
            "state": self.state,
            "activity": self.current.to_dict() if self.current else None,
            "elapsedSeconds": self.elapsed_seconds,
            "capSeconds": self.cap_seconds,
            "elapsed": format_clock(self.elapsed_seconds),
            "remaining": format_clock(snap.time_remaining_seconds if snap else 0),
            "progress": snap.to_dict() if snap else None,
        }

    # ── Transitions ──

    def start(self, activity: Activity, reset_progress: bool = False) -> bool:
        """Take ownership of *activity* and start timing it.

        The starting offset comes from the reconciler unless *reset_progress*
        is set. An activity whose window has already run out is completed on
        the spot.
        """
        if activity.is_finished or not activity.can_transition(STATUS_ACTIVE):
            return self._reject(InvalidTransition("start", activity.status, f"activity {activity.id}"))

        now = self._clock()
        if self.current is not None:
            self._teardown()

        if reset_progress:
            self._anchor = now
            offset = 0
        else:
            self._anchor = activity.planned_start
            offset = elapsed_minutes(activity.planned_start, activity.planned_duration_minutes, now) * 60

        previous_owner = self.ownership.take_over(activity.id, OWNER_TIMER)
        activity.transition(STATUS_ACTIVE, now)
        self.current = activity
        self.state = STATE_ACTIVE
        self.elapsed_seconds = min(offset, activity.total_seconds)
        self._since_broadcast = 0

        self.outbox.save(activity)
        self.outbox.put(CancelNotification(notification_id(ACTION_PROMOTE, activity.id)))
        snap = self.snapshot()
        if previous_owner == OWNER_MONITOR:
            self.outbox.put(CancelNotification(notification_id(ACTION_RETIRE, activity.id)))
        # Always reopen: the sink may be showing another promoted activity by now.
        self.outbox.put(SinkBegin(activity.id, activity.title, activity.total_seconds, snap))
        self._hook("on_session_start", reset_progress=reset_progress)
        logger.info(
            "Started %s (%s) at %ds of %ds",
            activity.id, activity.title, self.elapsed_seconds, activity.total_seconds,
        )

        if self.elapsed_seconds >= activity.total_seconds:
            logger.info("Activity %s window already elapsed; completing immediately", activity.id)
            self.complete()
            return True

        self._start_ticking()
        return True

    def pause(self) -> bool:
        if self.current is None or self.state != STATE_ACTIVE:
            return self._reject(InvalidTransition("pause", self.state))
        now = self._clock()
        self._stop_ticking()
        self.current.transition(STATUS_PAUSED, now)
        self.state = STATE_PAUSED
        self.outbox.save(self.current)
        self.outbox.put(SinkUpdate(self.snapshot()))
        self._hook("on_session_pause")
        logger.info("Paused %s at %ds", self.current.id, self.elapsed_seconds)
        return True

    def resume(self) -> bool:
        """Resume from the schedule position at the current wall-clock time.

        Time spent paused is not excluded: the reconciler only knows the
        planned window. The counter never moves backwards.
        """
        if self.current is None or self.state != STATE_PAUSED:
            return self._reject(InvalidTransition("resume", self.state))
        now = self._clock()
        activity = self.current
        reconciled = elapsed_seconds(self._anchor or activity.planned_start, activity.planned_duration_minutes, now)
        self.elapsed_seconds = min(activity.total_seconds, max(self.elapsed_seconds, reconciled))
        self._since_broadcast = 0

        activity.transition(STATUS_ACTIVE, now)
        self.state = STATE_ACTIVE
        self.outbox.save(activity)
        self.outbox.put(SinkUpdate(self.snapshot()))
        self._hook("on_session_resume")
        logger.info("Resumed %s at %ds", activity.id, self.elapsed_seconds)

        if self.elapsed_seconds >= activity.total_seconds:
            self.complete()
            return True
        self._start_ticking()
        return True

    def complete(self) -> bool:
        """Finish the session. Ownership is released after the grace delay."""
        if self.current is None or self.state not in (STATE_ACTIVE, STATE_PAUSED):
            return self._reject(InvalidTransition("complete", self.state))
        now = self._clock()
        activity = self.current
        self._stop_ticking()
        activity.transition(STATUS_COMPLETED, now)
        self.state = STATE_COMPLETED
        self.completions += 1

        self.outbox.save(activity)
        self.outbox.put(SinkUpdate(self._terminal_snapshot()))
        self._hook("on_session_complete")
        logger.info("Completed %s after %ds", activity.id, self.elapsed_seconds)

        self._release_handle = self._scheduler.later(
            self.settings.completion_grace_seconds, self._release, name=f"timebox-release-{activity.id}"
        )
        return True

    def stop(self) -> bool:
        """Abort without completing: the activity goes back to the queue."""
        if self.current is None or self.state not in (STATE_ACTIVE, STATE_PAUSED):
            return self._reject(InvalidTransition("stop", self.state))
        now = self._clock()
        activity = self.current
        self._abort(STATUS_SCHEDULED, now)

        if now >= activity.planned_start:
            self.ownership.suppress(activity.id, activity.planned_end)
        else:
            self.outbox.put(ScheduleNotification(NotificationPayload(
                activity_id=activity.id,
                action=ACTION_PROMOTE,
                fire_at=activity.planned_start,
                title="Time to focus",
                body=f"Starting '{activity.title}'",
            )))
        self._hook("on_session_stop")
        logger.info("Stopped %s at %ds; returned to schedule", activity.id, self.elapsed_seconds)
        self._clear()
        return True

    def cancel(self) -> bool:
        """Abort and withdraw the activity for good."""
        if self.current is None or self.state not in (STATE_ACTIVE, STATE_PAUSED):
            return self._reject(InvalidTransition("cancel", self.state))
        activity = self.current
        self._abort(STATUS_CANCELLED, self._clock())
        self._hook("on_session_stop", cancelled=True)
        logger.info("Cancelled %s at %ds", activity.id, self.elapsed_seconds)
        self._clear()
        return True

    def halt(self) -> None:
        """Stop ticking on shutdown. Nothing is saved; recover() picks it up later."""
        self._stop_ticking()
        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
        if self.state == STATE_COMPLETED:
            self._release()

    # ── Ticking ──

    def tick(self) -> None:
        """Advance one second. A no-op unless actively timing below the cap."""
        if self.current is None or self.state != STATE_ACTIVE:
            return
        cap = self.cap_seconds
        if self.elapsed_seconds >= cap:
            return
        self.elapsed_seconds += 1
        self.outbox.retry_failed_saves()

        if self.elapsed_seconds >= cap:
            self.complete()
            return

        self._since_broadcast += 1
        if self._since_broadcast >= self.settings.broadcast_every_seconds:
            self._since_broadcast = 0
            self.outbox.put(SinkUpdate(self.snapshot()))

    def reconcile(self) -> bool:
        """Catch the counter up with the wall clock after a suspension."""
        if self.current is None or self.state != STATE_ACTIVE:
            return False
        activity = self.current
        reconciled = elapsed_seconds(
            self._anchor or activity.planned_start, activity.planned_duration_minutes, self._clock()
        )
        if reconciled > self.elapsed_seconds:
            logger.info(
                "Activity %s: counter at %ds, wall clock says %ds; catching up",
                activity.id, self.elapsed_seconds, reconciled,
            )
            self.elapsed_seconds = min(activity.total_seconds, reconciled)
            if self.elapsed_seconds < activity.total_seconds:
                self.outbox.put(SinkUpdate(self.snapshot()))
        if self.elapsed_seconds >= activity.total_seconds:
            self.complete()
        return True

    def recover(self, candidates: Iterable[Activity]) -> Optional[Activity]:
        """Adopt the live activity a previous process left behind.

        Picks the most recently updated active or paused record and derives
        its offset from the reconciler, never from any stored counter.
        """
        if self.current is not None:
            return None
        live = [a for a in candidates if a.status in (STATUS_ACTIVE, STATUS_PAUSED) and not a.is_completed]
        if not live:
            return None
        activity = max(live, key=lambda a: a.updated_at or a.planned_start)

        if activity.status == STATUS_ACTIVE:
            logger.info("Recovering active session %s", activity.id)
            self.start(activity)
            return activity

        now = self._clock()
        self.ownership.take_over(activity.id, OWNER_TIMER)
        self.current = activity
        self.state = STATE_PAUSED
        self._anchor = activity.planned_start
        self.elapsed_seconds = min(
            activity.total_seconds,
            elapsed_minutes(activity.planned_start, activity.planned_duration_minutes, now) * 60,
        )
        self.outbox.put(SinkBegin(activity.id, activity.title, activity.total_seconds, self.snapshot()))
        logger.info("Recovered paused session %s at %ds", activity.id, self.elapsed_seconds)
        return activity

    # ── Internals ──

    def _terminal_snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            activity_id=self.current.id,
            time_remaining_seconds=0,
            progress_fraction=1.0,
            phase=PHASE_COMPLETED,
            is_active=False,
        )

    def _start_ticking(self) -> None:
        self._stop_ticking()
        self._ticker = self._scheduler.every(TICK_SECONDS, self.tick, name=f"timebox-tick-{self.current.id}")

    def _stop_ticking(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _teardown(self) -> None:
        """Make room for a new session."""
        if self.state == STATE_COMPLETED:
            self._release()
        else:
            self.stop()

    def _abort(self, status: str, now: datetime) -> None:
        activity = self.current
        self._stop_ticking()
        final = ProgressSnapshot.compute(
            activity.id, self.elapsed_seconds, activity.total_seconds, phase=PHASE_FOCUS, is_active=False
        )
        activity.transition(status, now)
        self.ownership.release(activity.id, OWNER_TIMER)
        self.outbox.save(activity)
        self.outbox.put(SinkUpdate(final))
        self.outbox.put(SinkEnd(activity.id))

    def _release(self) -> None:
        if self.current is None:
            return
        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
        activity_id = self.current.id
        self.ownership.release(activity_id, OWNER_TIMER)
        self.outbox.put(SinkEnd(activity_id))
        logger.debug("Released %s", activity_id)
        self._clear()

    def _clear(self) -> None:
        self.current = None
        self.state = STATE_IDLE
        self.elapsed_seconds = 0
        self._anchor = None
        self._since_broadcast = 0

    def _hook(self, hook_point: str, **extra: Any) -> None:
        activity = self.current
        self.outbox.put(RunHook(hook_point, {
            "activityId": activity.id,
            "title": activity.title,
            "status": activity.status,
            "elapsedSeconds": self.elapsed_seconds,
            "plannedDurationMinutes": activity.planned_duration_minutes,
            **extra,
        }))

    def _reject(self, error: InvalidTransition) -> bool:
        self.last_rejection = error
        logger.warning("Ignored timer request: %s", error)
        return False
