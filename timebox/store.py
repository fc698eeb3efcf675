"""Activity stores and the predicates used to query them.

The store is an external collaborator: anything that satisfies
:class:`ActivityStore` can be plugged into the service. Two implementations
ship with Timebox, a JSON file in the workspace and an in-memory store.
"""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol

from timebox.errors import StoreError, StoreReadFailed
from timebox.fileio import locked, read_json, write_json_atomic
from timebox.models import STATUS_COMPLETED, STATUS_SCHEDULED, Activity
from timebox.workspace import activities_path, workspace_root

Predicate = Callable[[Activity], bool]
SortKey = Callable[[Activity], Any]


class ActivityStore(Protocol):
    def fetch(self, predicate: Predicate | None = None, sort_key: SortKey | None = None) -> list[Activity]:
        ...

    def save(self, activity: Activity) -> None:
        ...

    def delete(self, activity_id: str) -> bool:
        ...


# ── Predicates ────────────────────────────────────────────────


def by_id(activity_id: str) -> Predicate:
    return lambda a: a.id == activity_id


def status_is(status: str) -> Predicate:
    return lambda a: a.status == status


def status_in(*statuses: str) -> Predicate:
    wanted = set(statuses)
    return lambda a: a.status in wanted


def due_scheduled(now: datetime) -> Predicate:
    """Scheduled, not completed, and the planned start has arrived."""
    return lambda a: a.status == STATUS_SCHEDULED and a.planned_start <= now and not a.is_completed


def upcoming_scheduled(now: datetime) -> Predicate:
    return lambda a: a.status == STATUS_SCHEDULED and a.planned_start > now and not a.is_completed


def completed_any() -> Predicate:
    return lambda a: a.is_completed or a.status == STATUS_COMPLETED


def by_planned_start(activity: Activity) -> datetime:
    return activity.planned_start


def _select(
    activities: Iterable[Activity],
    predicate: Predicate | None,
    sort_key: SortKey | None,
) -> list[Activity]:
    result = [a for a in activities if predicate is None or predicate(a)]
    if sort_key is not None:
        result.sort(key=sort_key)
    return result


def fetch_one(store: ActivityStore, activity_id: str) -> Optional[Activity]:
    found = store.fetch(by_id(activity_id))
    return found[0] if found else None


# ── Implementations ───────────────────────────────────────────


class MemoryActivityStore:
    """Keeps copies of activities in a dict; callers never share instances with it."""

    def __init__(self, activities: Iterable[Activity] = ()) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        for activity in activities:
            self._records[activity.id] = activity.to_dict()

    def fetch(self, predicate: Predicate | None = None, sort_key: SortKey | None = None) -> list[Activity]:
        with self._lock:
            records = list(self._records.values())
        return _select((Activity.from_dict(r) for r in records), predicate, sort_key)

    def save(self, activity: Activity) -> None:
        with self._lock:
            self._records[activity.id] = activity.to_dict()

    def delete(self, activity_id: str) -> bool:
        with self._lock:
            return self._records.pop(activity_id, None) is not None


class JsonActivityStore:
    """Stores every activity in ``activities.json`` under the workspace root.

    Each save rewrites the file atomically while holding a lock file, so a
    CLI command and a running server do not lose each other's writes. Reads
    that hit a corrupt file raise :class:`StoreError` instead of returning
    nothing.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root if root is not None else workspace_root()
        self.path = activities_path(self.root)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            data = read_json(self.path)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        records = data.get("activities") or []
        return {str(r.get("id")): r for r in records if isinstance(r, dict) and r.get("id")}

    def _dump(self, records: dict[str, dict[str, Any]]) -> None:
        ordered = sorted(records.values(), key=lambda r: str(r.get("plannedStart") or ""))
        try:
            write_json_atomic(self.path, {"activities": ordered})
        except OSError as e:
            raise StoreError(f"Cannot write {self.path}: {e}") from e

    def fetch(self, predicate: Predicate | None = None, sort_key: SortKey | None = None) -> list[Activity]:
        with self._lock:
            records = self._load()
        activities = []
        for record in records.values():
            try:
                activities.append(Activity.from_dict(record))
            except (TypeError, ValueError) as e:
                raise StoreError(f"Malformed activity record {record.get('id')}: {e}") from e
        return _select(activities, predicate, sort_key)

    def save(self, activity: Activity) -> None:
        with self._lock, locked(self.path):
            records = self._load()
            records[activity.id] = activity.to_dict()
            self._dump(records)

    def delete(self, activity_id: str) -> bool:
        with self._lock, locked(self.path):
            records = self._load()
            if records.pop(activity_id, None) is None:
                return False
            self._dump(records)
            return True


async def fetch_bounded(
    store: ActivityStore,
    predicate: Predicate | None = None,
    sort_key: SortKey | None = None,
    timeout: float = 5.0,
) -> list[Activity]:
    """Fetch off the event loop, giving up after *timeout* seconds."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(store.fetch, predicate, sort_key), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreReadFailed(f"fetch timed out after {timeout}s") from e
    except (StoreError, OSError) as e:
        raise StoreReadFailed(str(e)) from e
