"""Workspace root, timezone and file locations for Timebox.

Everything Timebox persists lives in one directory, ``$TIMEBOX_ROOT``
(default ``~/timebox``)::

    timebox.yaml         settings
    hooks.yaml           lifecycle hook commands
    activities.json      the activity store
    live_session.json    the open progress session, for widgets
    notifications.json   pending wake-ups for the platform agent
    timebox.log
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timebox.fileio import read_yaml

logger = logging.getLogger(__name__)


def workspace_root() -> Path:
    return Path(os.environ.get("TIMEBOX_ROOT", "~/timebox")).expanduser().resolve()


def _in(root: Path | None, name: str) -> Path:
    return (root if root is not None else workspace_root()) / name


def config_path(root: Path | None = None) -> Path:
    return _in(root, "timebox.yaml")


def hooks_config_path(root: Path | None = None) -> Path:
    return _in(root, "hooks.yaml")


def activities_path(root: Path | None = None) -> Path:
    return _in(root, "activities.json")


def live_session_path(root: Path | None = None) -> Path:
    return _in(root, "live_session.json")


def notifications_path(root: Path | None = None) -> Path:
    return _in(root, "notifications.json")


def log_path(root: Path | None = None) -> Path:
    return _in(root, "timebox.log")


def zone_named(name: str | None) -> ZoneInfo:
    """The IANA zone *name*, or UTC when it is empty or unknown."""
    if name:
        try:
            return ZoneInfo(str(name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; using UTC", name)
    return ZoneInfo("UTC")


def get_user_timezone(root: Path | None = None) -> ZoneInfo:
    """Timezone configured in timebox.yaml."""
    return zone_named(read_yaml(config_path(root)).get("timezone"))


def now_local(root: Path | None = None) -> datetime:
    return datetime.now(get_user_timezone(root))
