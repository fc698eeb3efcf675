"""Error kinds raised and reported by Timebox.

None of these is allowed to take the process down: store and sink failures
are logged by whoever delivers the call, and invalid transitions are turned
into no-ops by the session timer.
"""

from __future__ import annotations


class TimeboxError(Exception):
    """Base class for Timebox errors."""


class StoreError(TimeboxError):
    """Raised by an activity store when a read or write cannot be completed."""


class StoreWriteFailed(StoreError):
    """A save did not reach the store. The in-memory state already moved on."""

    def __init__(self, activity_id: str, reason: str) -> None:
        super().__init__(f"Saving activity {activity_id} failed: {reason}")
        self.activity_id = activity_id
        self.reason = reason


class StoreReadFailed(StoreError):
    """A fetch failed or timed out; the scan that issued it is skipped."""


class SinkUnavailable(TimeboxError):
    """No progress sink is available. Progress updates are dropped."""


class InvalidTransition(TimeboxError, ValueError):
    """An operation was requested in a state that does not allow it."""

    def __init__(self, operation: str, state: str, detail: str = "") -> None:
        message = f"Cannot {operation} while {state}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.state = state


class ActivityNotFound(TimeboxError, LookupError):
    def __init__(self, activity_id: str) -> None:
        super().__init__(f"Activity not found: {activity_id}")
        self.activity_id = activity_id
