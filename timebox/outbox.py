"""Queued outbound events and the consumer that delivers them.

The timer and the monitor never perform I/O themselves. Each side effect
(store write, progress sink call, notification, hook) is appended to the
:class:`Outbox` while the state machine runs, and a single
:class:`Dispatcher` task delivers events in order. Store calls are bounded
by a timeout; a write that fails or times out is logged and kept for a
retry on the next tick or poll.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Any, Callable, Optional

from timebox.errors import SinkUnavailable, StoreError, StoreWriteFailed
from timebox.hooks import run_hooks
from timebox.models import (
    Activity,
    CancelNotification,
    OutboundEvent,
    RunHook,
    SaveActivity,
    ScheduleNotification,
    SinkBegin,
    SinkEnd,
    SinkUpdate,
)
from timebox.sinks import NotificationScheduler, ProgressSink
from timebox.store import ActivityStore

logger = logging.getLogger(__name__)


class Outbox:
    def __init__(self) -> None:
        self._events: deque[OutboundEvent] = deque()
        self._failed_saves: dict[str, dict[str, Any]] = {}
        self._wakeup = asyncio.Event()

    def __len__(self) -> int:
        return len(self._events)

    def put(self, event: OutboundEvent) -> None:
        if isinstance(event, SaveActivity):
            # A newer write for the same record supersedes a failed one.
            self._failed_saves.pop(event.activity_id, None)
        self._events.append(event)
        self._wakeup.set()

    def save(self, activity: Activity) -> None:
        self.put(SaveActivity(activity.to_dict()))

    def pending(self) -> list[OutboundEvent]:
        return list(self._events)

    def pop(self) -> Optional[OutboundEvent]:
        if not self._events:
            self._wakeup.clear()
            return None
        return self._events.popleft()

    def drain(self) -> list[OutboundEvent]:
        events = list(self._events)
        self._events.clear()
        self._wakeup.clear()
        return events

    async def wait(self) -> None:
        await self._wakeup.wait()

    # ── Failed writes ──

    def mark_failed(self, event: SaveActivity) -> None:
        superseded = any(
            isinstance(e, SaveActivity) and e.activity_id == event.activity_id for e in self._events
        )
        if not superseded:
            self._failed_saves[event.activity_id] = event.record

    @property
    def failed_saves(self) -> set[str]:
        return set(self._failed_saves)

    def retry_failed_saves(self) -> int:
        """Re-queue writes that failed earlier. Returns how many were queued."""
        if not self._failed_saves:
            return 0
        records = list(self._failed_saves.values())
        self._failed_saves.clear()
        for record in records:
            self._events.append(SaveActivity(record))
        self._wakeup.set()
        logger.info("Retrying %d failed activity write(s)", len(records))
        return len(records)


class Dispatcher:
    """Delivers outbox events to the store, sink, notifier and hooks."""

    def __init__(
        self,
        outbox: Outbox,
        store: ActivityStore,
        sink: ProgressSink | None = None,
        notifier: NotificationScheduler | None = None,
        root: Path | None = None,
        store_timeout: float = 5.0,
        hook_timeout: float = 30.0,
    ) -> None:
        self.outbox = outbox
        self.store = store
        self.sink = sink
        self.notifier = notifier
        self.root = root
        self.store_timeout = store_timeout
        self.hook_timeout = hook_timeout
        self._task: Optional[asyncio.Task[None]] = None
        self._flushing = asyncio.Lock()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run(), name="timebox-dispatcher")

    async def stop(self) -> None:
        """Deliver what is queued, then stop the consumer task."""
        await self.flush()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            await self.outbox.wait()
            await self.flush()

    async def flush(self) -> int:
        """Deliver everything queued right now. Returns the number delivered."""
        delivered = 0
        async with self._flushing:
            while True:
                event = self.outbox.pop()
                if event is None:
                    return delivered
                await self.deliver(event)
                delivered += 1

    async def deliver(self, event: OutboundEvent) -> None:
        try:
            if isinstance(event, SaveActivity):
                await self._save(event)
            elif isinstance(event, (SinkBegin, SinkUpdate, SinkEnd)):
                await self._to_sink(event)
            elif isinstance(event, (ScheduleNotification, CancelNotification)):
                await self._to_notifier(event)
            elif isinstance(event, RunHook):
                await asyncio.to_thread(run_hooks, event.hook_point, event.context, self.root, self.hook_timeout)
            else:
                logger.warning("Dropping unknown outbound event %r", event)
        except SinkUnavailable:
            logger.debug("No progress sink; dropped %s", type(event).__name__)
        except Exception:
            logger.exception("Delivering %s failed", type(event).__name__)

    async def _bounded(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.store_timeout)

    async def _save(self, event: SaveActivity) -> None:
        try:
            await self._bounded(self.store.save, Activity.from_dict(event.record))
        except asyncio.TimeoutError:
            self._write_failed(event, f"timed out after {self.store_timeout}s")
        except (StoreError, OSError) as e:
            self._write_failed(event, str(e))

    def _write_failed(self, event: SaveActivity, reason: str) -> None:
        error = StoreWriteFailed(event.activity_id, reason)
        logger.warning("%s; keeping in-memory state and retrying later", error)
        self.outbox.mark_failed(event)

    async def _to_sink(self, event: SinkBegin | SinkUpdate | SinkEnd) -> None:
        if self.sink is None:
            raise SinkUnavailable("progress sink disabled")
        if isinstance(event, SinkBegin):
            await asyncio.to_thread(
                self.sink.begin, event.activity_id, event.title, event.total_duration_seconds, event.snapshot
            )
        elif isinstance(event, SinkUpdate):
            await asyncio.to_thread(self.sink.update, event.snapshot)
        else:
            await asyncio.to_thread(self.sink.end, event.activity_id)

    async def _to_notifier(self, event: ScheduleNotification | CancelNotification) -> None:
        if self.notifier is None:
            logger.debug("No notification scheduler; dropped %s", type(event).__name__)
            return
        if isinstance(event, ScheduleNotification):
            await asyncio.to_thread(self.notifier.schedule_at, event.payload)
        else:
            await asyncio.to_thread(self.notifier.cancel, event.identifier)
