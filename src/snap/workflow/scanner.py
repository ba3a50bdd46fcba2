from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from snap.workflow.steps import WorkflowError

TASK_FILE_PATTERN = re.compile(r"^TASK(\d+)\.md$")
CASE_MISMATCH_PATTERN = re.compile(r"^task(\d+)\.md$", re.IGNORECASE)
PRD_TASK_HEADER_PATTERN = re.compile(r"^## TASK\d+:")

PRD_HEADERS_HINT = (
    "PRD.md contains TASK headers, but snap needs separate files: TASK1.md, TASK2.md, etc."
)


class TaskDirEmptyError(WorkflowError):
    """Raised when a tasks directory holds no ``TASK<n>.md`` files."""


@dataclass(slots=True, frozen=True)
class TaskInfo:
    id: str
    number: int
    filename: str


def scan_tasks(directory: Path) -> list[TaskInfo]:
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        raise WorkflowError(f"read tasks directory: {exc}") from exc

    seen: dict[int, str] = {}
    tasks: list[TaskInfo] = []
    for entry in sorted(entries, key=lambda item: item.name):
        if entry.is_dir():
            continue
        match = TASK_FILE_PATTERN.match(entry.name)
        if not match:
            continue
        number = int(match.group(1))
        if number in seen:
            raise WorkflowError(
                f"duplicate task number {number}: {seen[number]} and {entry.name}"
            )
        seen[number] = entry.name
        tasks.append(TaskInfo(id=f"TASK{number}", number=number, filename=entry.name))
    tasks.sort(key=lambda task: task.number)
    return tasks


def select_next_task(tasks: list[TaskInfo], completed_ids: Iterable[str]) -> TaskInfo | None:
    completed = set(completed_ids)
    for task in tasks:
        if task.id not in completed:
            return task
    return None


def diagnose_empty_task_dir(directory: Path) -> list[str]:
    hints: list[str] = []
    try:
        entries = sorted(directory.iterdir(), key=lambda item: item.name)
    except OSError:
        return hints
    for entry in entries:
        if entry.is_dir():
            continue
        match = CASE_MISMATCH_PATTERN.match(entry.name)
        if match and not TASK_FILE_PATTERN.match(entry.name):
            hints.append(f"Found: {entry.name} (rename to TASK{match.group(1)}.md)")

    prd_path = directory / "PRD.md"
    if prd_path.is_file():
        with prd_path.open(encoding="utf-8", errors="replace") as handle:
            if any(PRD_TASK_HEADER_PATTERN.match(line) for line in handle):
                hints.append(PRD_HEADERS_HINT)
    return hints


def format_task_dir_error(directory: Path | str, hints: list[str]) -> str:
    lines = [
        f"Error: no task files found in {directory}/",
        "",
        "snap looks for files named TASK1.md, TASK2.md, etc.",
    ]
    lines.extend(hints)
    lines.extend(["", "To get started:", "  snap init"])
    return "\n".join(lines)
