"""The shared table of which component is handling which activity.

The session timer and the scheduled-activity monitor both consult this
table before touching an activity's timing state. An id has at most one
owner. The timer may take an id over from the monitor (the user started a
promoted activity by hand); the monitor only ever claims ids nobody holds.

The table lives on the event loop with everything else and is not locked.
"""

from __future__ import annotations

import logging
from datetime import datetime

logger = logging.getLogger(__name__)

OWNER_TIMER = "timer"
OWNER_MONITOR = "monitor"


class OwnershipTable:
    def __init__(self) -> None:
        self._owners: dict[str, str] = {}
        self._suppressed: dict[str, datetime] = {}

    def __contains__(self, activity_id: str) -> bool:
        return activity_id in self._owners

    def owner_of(self, activity_id: str) -> str | None:
        return self._owners.get(activity_id)

    def tracked(self) -> set[str]:
        return set(self._owners)

    def tracked_by(self, owner: str) -> set[str]:
        return {aid for aid, who in self._owners.items() if who == owner}

    def try_claim(self, activity_id: str, owner: str) -> bool:
        """Claim an id only if it is free (or already ours)."""
        current = self._owners.get(activity_id)
        if current is not None and current != owner:
            return False
        self._owners[activity_id] = owner
        return True

    def take_over(self, activity_id: str, owner: str) -> str | None:
        """Claim an id unconditionally, returning the previous owner."""
        previous = self._owners.get(activity_id)
        self._owners[activity_id] = owner
        self._suppressed.pop(activity_id, None)
        if previous is not None and previous != owner:
            logger.info("Activity %s handed from %s to %s", activity_id, previous, owner)
        return previous

    def release(self, activity_id: str, owner: str) -> bool:
        """Release an id held by *owner*. Releasing someone else's id is a no-op."""
        if self._owners.get(activity_id) != owner:
            return False
        del self._owners[activity_id]
        return True

    def suppress(self, activity_id: str, until: datetime) -> None:
        """Keep an id away from automatic promotion until *until*."""
        self._suppressed[activity_id] = until

    def is_suppressed(self, activity_id: str, now: datetime) -> bool:
        until = self._suppressed.get(activity_id)
        if until is None:
            return False
        if now > until:
            del self._suppressed[activity_id]
            return False
        return True

    def clear_suppression(self, activity_id: str) -> None:
        self._suppressed.pop(activity_id, None)

    def prune_suppressions(self, now: datetime) -> int:
        """Drop suppressions whose window has already closed."""
        expired = [aid for aid, until in self._suppressed.items() if now > until]
        for activity_id in expired:
            del self._suppressed[activity_id]
        return len(expired)

    def suppressed(self) -> set[str]:
        return set(self._suppressed)
