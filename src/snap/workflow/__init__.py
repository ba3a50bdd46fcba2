from snap.workflow.resolver import ResumeError, StartupTarget, resolve_startup
from snap.workflow.runner import Runner, RunnerConfig
from snap.workflow.scanner import (
    TaskDirEmptyError,
    TaskInfo,
    diagnose_empty_task_dir,
    format_task_dir_error,
    scan_tasks,
    select_next_task,
)
from snap.workflow.steps import (
    AUTONOMOUS_SUFFIX,
    NO_COMMIT_SUFFIX,
    STEP_COUNT,
    StepContext,
    StepError,
    StepRunner,
    WorkflowError,
    build_prompt,
    step_name,
)

__all__ = [
    "AUTONOMOUS_SUFFIX",
    "NO_COMMIT_SUFFIX",
    "STEP_COUNT",
    "ResumeError",
    "Runner",
    "RunnerConfig",
    "StartupTarget",
    "StepContext",
    "StepError",
    "StepRunner",
    "TaskDirEmptyError",
    "TaskInfo",
    "WorkflowError",
    "build_prompt",
    "diagnose_empty_task_dir",
    "format_task_dir_error",
    "resolve_startup",
    "scan_tasks",
    "select_next_task",
    "step_name",
]
