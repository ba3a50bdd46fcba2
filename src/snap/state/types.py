from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class WorkflowState:
    """Persistent progress of the task workflow for one session.

    ``current_step`` is 1-indexed; ``total_steps + 1`` means every step of the
    active task has finished and only the completion bookkeeping remains.
    """

    tasks_dir: str
    prd_path: str
    total_steps: int
    current_task_id: str = ""
    current_task_file: str = ""
    current_step: int = 1
    completed_task_ids: list[str] = field(default_factory=list)
    session_id: str = ""
    last_updated: datetime = field(default_factory=_utcnow)
    last_error: str = ""

    @classmethod
    def new(cls, tasks_dir: str, prd_path: str, total_steps: int) -> WorkflowState:
        return cls(tasks_dir=tasks_dir, prd_path=prd_path, total_steps=total_steps)

    def is_valid(self) -> bool:
        if self.current_step < 1 or self.current_step > self.total_steps + 1:
            return False
        if not self.prd_path or not self.tasks_dir:
            return False
        if len(set(self.completed_task_ids)) != len(self.completed_task_ids):
            return False
        if self.current_task_id and self.current_task_id in self.completed_task_ids:
            return False
        return True

    def mark_step_complete(self) -> None:
        self.current_step += 1
        self.last_error = ""
        self.last_updated = _utcnow()

    def mark_step_failed(self, error: BaseException | str) -> None:
        self.last_error = str(error)
        self.last_updated = _utcnow()

    def is_task_complete(self, task_id: str) -> bool:
        return task_id in self.completed_task_ids

    def complete_current_task(self) -> None:
        if self.current_task_id and self.current_task_id not in self.completed_task_ids:
            self.completed_task_ids.append(self.current_task_id)
        self.current_task_id = ""
        self.current_task_file = ""
        self.current_step = 1
        self.last_error = ""
        self.session_id = ""
        self.last_updated = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"tasks_dir": self.tasks_dir}
        if self.current_task_id:
            payload["current_task_id"] = self.current_task_id
        if self.current_task_file:
            payload["current_task_file"] = self.current_task_file
        payload["current_step"] = self.current_step
        payload["total_steps"] = self.total_steps
        payload["completed_task_ids"] = list(self.completed_task_ids)
        payload["session_id"] = self.session_id
        payload["last_updated"] = self.last_updated.isoformat()
        if self.last_error:
            payload["last_error"] = self.last_error
        payload["prd_path"] = self.prd_path
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowState:
        raw_updated = data.get("last_updated")
        last_updated = _utcnow()
        if isinstance(raw_updated, str) and raw_updated:
            last_updated = datetime.fromisoformat(raw_updated.replace("Z", "+00:00"))
        completed = data.get("completed_task_ids") or []
        if not isinstance(completed, list):
            raise ValueError("completed_task_ids must be a list")
        return cls(
            tasks_dir=str(data.get("tasks_dir") or ""),
            prd_path=str(data.get("prd_path") or ""),
            total_steps=int(data.get("total_steps") or 0),
            current_task_id=str(data.get("current_task_id") or ""),
            current_task_file=str(data.get("current_task_file") or ""),
            current_step=int(data.get("current_step") or 0),
            completed_task_ids=[str(item) for item in completed],
            session_id=str(data.get("session_id") or ""),
            last_updated=last_updated,
            last_error=str(data.get("last_error") or ""),
        )

    def summary(self, step_name: Callable[[int], str]) -> str:
        """Human-readable view used by ``snap run --show-state``."""
        lines = [
            f"Tasks dir:   {self.tasks_dir}",
            f"PRD:         {self.prd_path}",
        ]
        if self.current_task_id:
            name = step_name(self.current_step)
            step_label = f"{self.current_step}/{self.total_steps}"
            if name:
                step_label += f" ({name})"
            lines.append(f"Active task: {self.current_task_id}")
            lines.append(f"Step:        {step_label}")
        else:
            lines.append("Active task: none (idle)")
        completed = ", ".join(self.completed_task_ids) if self.completed_task_ids else "none"
        lines.append(f"Completed:   {completed}")
        if self.last_error:
            lines.append(f"Last error:  {self.last_error}")
        lines.append(f"Updated:     {self.last_updated.isoformat(timespec='seconds')}")
        return "\n".join(lines)
