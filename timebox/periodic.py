"""Repeating and delayed callbacks on the running asyncio loop.

The timer and the monitor never talk to asyncio directly; they ask a
:class:`LoopScheduler` for handles. Tests swap in a scheduler that records
requests and fires them by hand.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[Any]]]


class Handle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def every(self, interval: float, callback: Callback, name: str) -> Handle:
        ...

    def later(self, delay: float, callback: Callable[[], None], name: str) -> Handle:
        ...


class PeriodicTask:
    """Runs *callback* every *interval* seconds until cancelled.

    The first run happens one interval after start. Exceptions raised by the
    callback are logged and the loop keeps going.
    """

    def __init__(self, interval: float, callback: Callback, name: str) -> None:
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> PeriodicTask:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic task %s failed; continuing", self.name)


class LoopScheduler:
    """Scheduler backed by the running event loop."""

    def every(self, interval: float, callback: Callback, name: str) -> PeriodicTask:
        return PeriodicTask(interval, callback, name).start()

    def later(self, delay: float, callback: Callable[[], None], name: str) -> asyncio.TimerHandle:
        logger.debug("Scheduling %s in %.1fs", name, delay)
        return asyncio.get_running_loop().call_later(delay, callback)
