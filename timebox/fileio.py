"""Workspace file access: JSON state files, YAML config, and a sidecar lock.

The CLI and a running server may both rewrite ``activities.json``. Writers
hold :func:`locked` around the whole read-modify-write and replace files
atomically, so readers never see a half-written file.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator

import yaml


def _text(path: Path) -> str | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return text if text.strip() else None


def read_json(path: Path) -> dict[str, Any]:
    """Read a JSON object; missing or blank files read as ``{}``.

    Malformed JSON raises :class:`json.JSONDecodeError`. Callers decide
    whether that is fatal.
    """
    text = _text(path)
    if text is None:
        return {}
    data = json.loads(text)
    return data if isinstance(data, dict) else {}


def read_yaml(path: Path) -> dict[str, Any]:
    text = _text(path)
    if text is None:
        return {}
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


@contextlib.contextmanager
def locked(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on ``<path>.lock`` for the duration of the block."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path.with_name(path.name + ".lock"), "a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _replace(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    _replace(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    _replace(path, yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False))
