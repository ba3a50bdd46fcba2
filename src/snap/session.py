"""On-disk session store.

Sessions live under ``<project>/.snap/sessions/<name>/``. Each one owns a
``tasks/`` directory for planning artifacts and task files, an optional
``state.json`` written by the workflow runner, and an optional
``.plan-started`` marker written after the first successful planning call.
"""

from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

SNAP_DIR = ".snap"
SESSIONS_DIR = "sessions"
TASKS_DIR = "tasks"
STATE_FILE = "state.json"
PLAN_MARKER = ".plan-started"
DEFAULT_SESSION = "default"
GITIGNORE_CONTENT = "*\n!.gitignore\n"

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
TASK_FILE_PATTERN = re.compile(r"^TASK(\d+)\.md$")
ARTIFACT_NAMES = frozenset({"PRD.md", "TECHNOLOGY.md", "DESIGN.md", "TASKS.md"})


class SessionError(RuntimeError):
    """Raised when a session store operation fails."""


class InvalidSessionNameError(SessionError):
    pass


class SessionExistsError(SessionError):
    pass


class SessionNotFoundError(SessionError):
    pass


@dataclass(slots=True)
class SessionInfo:
    name: str
    task_count: int = 0
    completed_count: int = 0
    status: str = "idle"


@dataclass(slots=True)
class TaskStatus:
    id: str
    completed: bool = False


@dataclass(slots=True)
class StatusInfo:
    name: str
    tasks_dir: Path
    tasks: list[TaskStatus] = field(default_factory=list)
    active_task: str = ""
    active_step: int = 0
    total_steps: int = 0


def validate_name(name: str) -> None:
    if not name:
        raise InvalidSessionNameError("session name required")
    if not NAME_PATTERN.fullmatch(name):
        raise InvalidSessionNameError(
            f"invalid session name {name!r} (use alphanumeric, hyphens, underscores)"
        )


def snap_dir(root: Path) -> Path:
    return root / SNAP_DIR


def sessions_dir(root: Path) -> Path:
    return snap_dir(root) / SESSIONS_DIR


def session_dir(root: Path, name: str) -> Path:
    return sessions_dir(root) / name


def tasks_dir(root: Path, name: str) -> Path:
    return session_dir(root, name) / TASKS_DIR


def ensure_gitignore(directory: Path) -> None:
    gitignore = directory / ".gitignore"
    if not gitignore.exists():
        directory.mkdir(parents=True, exist_ok=True)
        gitignore.write_text(GITIGNORE_CONTENT, encoding="utf-8")


def exists(root: Path, name: str) -> bool:
    return session_dir(root, name).is_dir()


def create(root: Path, name: str) -> Path:
    validate_name(name)
    if exists(root, name):
        raise SessionExistsError(f"session '{name}' already exists")
    target = tasks_dir(root, name)
    target.mkdir(parents=True, exist_ok=True)
    ensure_gitignore(snap_dir(root))
    return session_dir(root, name)


def ensure_default(root: Path) -> Path:
    if exists(root, DEFAULT_SESSION):
        return session_dir(root, DEFAULT_SESSION)
    return create(root, DEFAULT_SESSION)


def resolve(root: Path, name: str) -> Path:
    validate_name(name)
    if not exists(root, name):
        raise SessionNotFoundError(
            f"session '{name}' not found — create it with: snap new {name}"
        )
    return session_dir(root, name)


def delete(root: Path, name: str) -> None:
    validate_name(name)
    if not exists(root, name):
        raise SessionNotFoundError(f"session '{name}' not found")
    shutil.rmtree(session_dir(root, name))


def _well_typed(state: dict[str, Any]) -> bool:
    completed = state.get("completed_task_ids")
    if completed is not None and not isinstance(completed, list):
        return False
    for key in ("current_step", "total_steps"):
        value = state.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            return False
    current = state.get("current_task_id")
    return current is None or isinstance(current, str)


def _read_state(path: Path) -> tuple[dict[str, Any] | None, bool]:
    """Return ``(state, corrupt)`` for a state.json path.

    Fields read for status derivation must have their JSON types; anything
    else counts as corrupt.
    """
    if not path.is_file():
        return None, False
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None, True
    if not isinstance(parsed, dict) or not _well_typed(parsed):
        return None, True
    return parsed, False


def _task_numbers(directory: Path) -> list[tuple[int, str]]:
    if not directory.is_dir():
        return []
    found: list[tuple[int, str]] = []
    for entry in directory.iterdir():
        if entry.is_dir():
            continue
        match = TASK_FILE_PATTERN.match(entry.name)
        if match:
            number = int(match.group(1))
            found.append((number, f"TASK{number}"))
    return sorted(found)


def _derive_status(
    task_count: int,
    state: dict[str, Any] | None,
    corrupt: bool,
    has_planning: bool,
) -> str:
    if corrupt:
        return "unknown"
    completed_count = len(state.get("completed_task_ids") or []) if state else 0
    if has_planning and completed_count == 0:
        return "planning"
    if task_count == 0 and not has_planning:
        return "no tasks"
    if state is not None:
        if task_count > 0 and completed_count >= task_count:
            return "complete"
        current_step = int(state.get("current_step") or 0)
        if state.get("current_task_id") and current_step > 0:
            return f"paused at step {current_step}"
    return "idle"


def list_sessions(root: Path) -> list[SessionInfo]:
    base = sessions_dir(root)
    if not base.is_dir():
        return []
    sessions: list[SessionInfo] = []
    for entry in sorted(base.iterdir(), key=lambda item: item.name):
        if not entry.is_dir():
            continue
        state, corrupt = _read_state(entry / STATE_FILE)
        info = SessionInfo(name=entry.name)
        info.task_count = len(_task_numbers(entry / TASKS_DIR))
        if state is not None:
            info.completed_count = len(state.get("completed_task_ids") or [])
        info.status = _derive_status(
            info.task_count, state, corrupt, (entry / PLAN_MARKER).exists()
        )
        sessions.append(info)
    return sessions


def has_plan_history(root: Path, name: str) -> bool:
    return (session_dir(root, name) / PLAN_MARKER).exists()


def mark_plan_started(root: Path, name: str) -> None:
    (session_dir(root, name) / PLAN_MARKER).write_bytes(b"")


def has_artifacts(root: Path, name: str) -> bool:
    directory = tasks_dir(root, name)
    if not directory.is_dir():
        return False
    for entry in directory.iterdir():
        if entry.is_dir():
            continue
        if entry.name in ARTIFACT_NAMES or TASK_FILE_PATTERN.match(entry.name):
            return True
    return False


def clean_session(root: Path, name: str) -> None:
    """Remove task-level files and run markers, keeping the directories."""
    directory = tasks_dir(root, name)
    if directory.is_dir():
        for entry in directory.iterdir():
            if entry.is_file() or entry.is_symlink():
                entry.unlink()
    for marker in (STATE_FILE, PLAN_MARKER):
        (session_dir(root, name) / marker).unlink(missing_ok=True)


def status(root: Path, name: str) -> StatusInfo:
    resolve(root, name)
    state, _ = _read_state(session_dir(root, name) / STATE_FILE)
    completed = set(state.get("completed_task_ids") or []) if state else set()
    info = StatusInfo(name=name, tasks_dir=tasks_dir(root, name))
    for _, task_id in _task_numbers(info.tasks_dir):
        info.tasks.append(TaskStatus(id=task_id, completed=task_id in completed))
    if state and state.get("current_task_id"):
        info.active_task = str(state["current_task_id"])
        info.active_step = int(state.get("current_step") or 0)
        info.total_steps = int(state.get("total_steps") or 0)
    return info
