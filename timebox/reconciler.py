"""Elapsed-time reconciliation against an activity's planned window.

Everything here is a pure function of (planned start, planned duration, now).
No running counter is consulted: after a suspension or a restart the answer
is recomputed from the wall clock, which is the only thing that kept ticking.

The window is ``[planned_start, planned_start + duration]``. Before it,
nothing has elapsed; after it, the whole duration has. Overtime is never
reported.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta


def window_end(planned_start: datetime, planned_duration_minutes: int) -> datetime:
    return planned_start + timedelta(minutes=planned_duration_minutes)


def is_within_window(planned_start: datetime, planned_duration_minutes: int, now: datetime) -> bool:
    return planned_start <= now <= window_end(planned_start, planned_duration_minutes)


def remaining_seconds(planned_start: datetime, planned_duration_minutes: int, now: datetime) -> float:
    """Seconds left in the window, clamped to ``[0, duration * 60]``."""
    total = max(0, planned_duration_minutes) * 60
    if now < planned_start:
        return float(total)
    left = (window_end(planned_start, planned_duration_minutes) - now).total_seconds()
    return min(float(total), max(0.0, left))


def elapsed_minutes(planned_start: datetime, planned_duration_minutes: int, now: datetime) -> int:
    """Whole minutes of the planned duration considered spent at *now*.

    Inside the window this is ``duration - floor(minutes remaining)``, so a
    started minute counts as spent.
    """
    if planned_duration_minutes <= 0 or now < planned_start:
        return 0
    end = window_end(planned_start, planned_duration_minutes)
    if now > end:
        return planned_duration_minutes
    minutes_remaining = math.floor((end - now).total_seconds() / 60)
    return planned_duration_minutes - minutes_remaining


def elapsed_seconds(planned_start: datetime, planned_duration_minutes: int, now: datetime) -> int:
    """Second-resolution counterpart of :func:`elapsed_minutes`."""
    total = max(0, planned_duration_minutes) * 60
    return total - math.ceil(remaining_seconds(planned_start, planned_duration_minutes, now))


def progress_at(planned_start: datetime, planned_duration_minutes: int, now: datetime) -> float:
    if planned_duration_minutes <= 0:
        return 1.0
    return elapsed_seconds(planned_start, planned_duration_minutes, now) / (planned_duration_minutes * 60)


def format_clock(seconds: float) -> str:
    """Render seconds as MM:SS (minutes may exceed 59)."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
