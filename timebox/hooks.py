"""Lifecycle hooks for Timebox.

``hooks.yaml`` in the workspace maps a hook point to one command or a list
of commands. An entry is either a shell string or a mapping with
``command`` and an optional ``timeout``::

    on_session_complete:
      - notify-send "Done"
      - {command: ./log-session.sh, timeout: 5}
    on_progress_update: ./update-widget.sh

Each command receives the event context as JSON on stdin, with the hook
point under ``"hook"``.

Hook points:
- on_session_start, on_session_pause, on_session_resume
- on_session_complete, on_session_stop
- on_activity_promote, on_activity_retire
- on_progress_begin, on_progress_update, on_progress_end (progress sink)

Commands are blocking subprocess calls and only run from the outbox
dispatcher, off the event loop.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from timebox.fileio import read_yaml
from timebox.workspace import hooks_config_path, workspace_root

logger = logging.getLogger(__name__)

SESSION_HOOK_POINTS = {
    "on_session_start",
    "on_session_pause",
    "on_session_resume",
    "on_session_complete",
    "on_session_stop",
    "on_activity_promote",
    "on_activity_retire",
}

PROGRESS_HOOK_POINTS = {
    "on_progress_begin",
    "on_progress_update",
    "on_progress_end",
}

VALID_HOOK_POINTS = SESSION_HOOK_POINTS | PROGRESS_HOOK_POINTS

DEFAULT_TIMEOUT = 30
OUTPUT_LIMIT = 4096


@dataclass
class HookCommand:
    command: str
    timeout: float


def load_hooks_config(root: Path | None = None) -> dict[str, Any]:
    return read_yaml(hooks_config_path(root if root is not None else workspace_root()))


def commands_for(hook_point: str, config: dict[str, Any], default_timeout: float = DEFAULT_TIMEOUT) -> list[HookCommand]:
    """Normalize the entries configured for *hook_point*, skipping malformed ones."""
    entries = config.get(hook_point)
    if isinstance(entries, (str, dict)):
        entries = [entries]
    if not isinstance(entries, list):
        return []
    commands = []
    for entry in entries:
        if isinstance(entry, str):
            command, timeout = entry, default_timeout
        elif isinstance(entry, dict):
            command, timeout = entry.get("command"), entry.get("timeout", default_timeout)
        else:
            logger.warning("Ignoring %s hook entry %r", hook_point, entry)
            continue
        if not isinstance(command, str) or not command.strip():
            continue
        try:
            seconds = float(timeout)
        except (TypeError, ValueError):
            logger.warning("Ignoring %s hook %r: bad timeout %r", hook_point, command, timeout)
            continue
        commands.append(HookCommand(command, seconds))
    return commands


def has_hooks(hook_point: str, root: Path | None = None) -> bool:
    return bool(commands_for(hook_point, load_hooks_config(root)))


def _run_command(hook: HookCommand, hook_point: str, stdin: str, cwd: Path) -> dict[str, Any]:
    result: dict[str, Any] = {"command": hook.command, "hook_point": hook_point}
    try:
        proc = subprocess.run(
            hook.command,
            shell=True,
            input=stdin,
            capture_output=True,
            text=True,
            timeout=hook.timeout,
            cwd=str(cwd),
        )
    except subprocess.TimeoutExpired:
        logger.warning("Hook %s (%s) timed out after %ss", hook_point, hook.command, hook.timeout)
        result.update(exit_code=-1, error=f"Hook timed out after {hook.timeout:g}s")
        return result
    except OSError as e:
        logger.warning("Hook %s (%s) failed: %s", hook_point, hook.command, e)
        result.update(exit_code=-1, error=str(e))
        return result

    if proc.returncode != 0:
        logger.warning("Hook %s (%s) exited with %d", hook_point, hook.command, proc.returncode)
    result.update(
        exit_code=proc.returncode,
        stdout=proc.stdout[:OUTPUT_LIMIT],
        stderr=proc.stderr[:OUTPUT_LIMIT],
    )
    return result


def run_hooks(
    hook_point: str,
    context: dict[str, Any],
    root: Path | None = None,
    default_timeout: float = DEFAULT_TIMEOUT,
) -> list[dict[str, Any]]:
    """Run every command registered for *hook_point*, in order.

    Returns one result per command with its exit code and captured output.
    A failing or hanging command is reported in its result, never raised.
    """
    if hook_point not in VALID_HOOK_POINTS:
        logger.debug("Ignoring unknown hook point %s", hook_point)
        return []
    root = root if root is not None else workspace_root()
    commands = commands_for(hook_point, load_hooks_config(root), default_timeout)
    if not commands:
        return []
    stdin = json.dumps({"hook": hook_point, **context}, ensure_ascii=False)
    return [_run_command(hook, hook_point, stdin, root) for hook in commands]
