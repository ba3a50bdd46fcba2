from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from snap.state.types import WorkflowState
from snap.workflow.scanner import scan_tasks
from snap.workflow.steps import WorkflowError

RESET_HINT = "use --fresh to reset or --show-state to inspect"


class ResumeError(WorkflowError):
    """Raised when persisted state cannot be resumed."""


@dataclass(slots=True)
class StartupTarget:
    resume: bool
    task_id: str = ""
    task_file: str = ""
    step: int = 1
    task_count: int = 0


def resolve_startup(state: WorkflowState, tasks_dir: Path) -> StartupTarget:
    """Decide between resuming the active task and selecting a new one.

    Resume mode validates the active task against ``tasks_dir`` and backfills
    ``current_task_file`` when the record lacks it. Select mode does not
    touch the filesystem.
    """
    if not state.current_task_id:
        return StartupTarget(resume=False)

    task_id = state.current_task_id
    tasks = scan_tasks(tasks_dir)
    found = next((task for task in tasks if task.id == task_id), None)
    if found is None:
        raise ResumeError(
            f"active task {task_id} not found in {tasks_dir} "
            f"(file may have been deleted or renamed); {RESET_HINT}"
        )
    if state.is_task_complete(task_id):
        raise ResumeError(
            f"active task {task_id} is already marked as completed; use --fresh to reset"
        )
    if state.current_step < 1 or state.current_step > state.total_steps + 1:
        raise ResumeError(
            f"invalid step {state.current_step} for {task_id} "
            f"(expected 1-{state.total_steps + 1}); {RESET_HINT}"
        )
    if not state.current_task_file:
        state.current_task_file = found.filename
    return StartupTarget(
        resume=True,
        task_id=task_id,
        task_file=state.current_task_file,
        step=state.current_step,
        task_count=len(tasks),
    )
