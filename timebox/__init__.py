"""Timebox: focus-session timer and scheduled-activity monitor.

Public API re-exports for convenient imports:
    from timebox import FocusService, Activity, elapsed_minutes, ...
"""

# Workspace & paths
from timebox.workspace import (
    workspace_root,
    get_user_timezone,
    zone_named,
    now_local,
    config_path,
    activities_path,
    live_session_path,
    notifications_path,
    hooks_config_path,
    log_path,
)

# Errors
from timebox.errors import (
    TimeboxError,
    StoreError,
    StoreWriteFailed,
    StoreReadFailed,
    SinkUnavailable,
    InvalidTransition,
    ActivityNotFound,
)

# Models
from timebox.models import (
    STATUS_SCHEDULED,
    STATUS_ACTIVE,
    STATUS_PAUSED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    VALID_STATUSES,
    ACTION_PROMOTE,
    ACTION_RETIRE,
    Activity,
    ProgressSnapshot,
    NotificationPayload,
    notification_id,
)

# Elapsed-time reconciler
from timebox.reconciler import (
    elapsed_minutes,
    elapsed_seconds,
    remaining_seconds,
    is_within_window,
    progress_at,
)

# Config
from timebox.config import Settings, load_settings, write_default_settings

# Stores
from timebox.store import (
    ActivityStore,
    JsonActivityStore,
    MemoryActivityStore,
    by_id,
    status_is,
    status_in,
    due_scheduled,
    upcoming_scheduled,
    completed_any,
)

# Scheduling helpers
from timebox.activities import (
    validate_activity,
    list_activities,
    create_activity,
    reschedule_activity,
    delete_activity,
)

# Engines
from timebox.ownership import OwnershipTable
from timebox.outbox import Outbox, Dispatcher
from timebox.timer import SessionTimer
from timebox.monitor import ScheduledActivityMonitor
from timebox.service import FocusService
