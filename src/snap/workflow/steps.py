from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TextIO

from snap import ui
from snap.backends.base import CONTINUE_FLAG, FAST, THINKING, AgentExecutor, ModelHint

AUTONOMOUS_SUFFIX = (
    "Work autonomously end-to-end. Do not ask the user any questions. "
    "Do not request approval. Do not pause for confirmation."
)
NO_COMMIT_SUFFIX = "Do not stage, commit, amend, rebase, or push any changes in this step."


class WorkflowError(RuntimeError):
    """Raised when the task workflow cannot continue."""


class StepError(WorkflowError):
    def __init__(self, message: str, *, step_name: str, step_number: int | None = None) -> None:
        super().__init__(message)
        self.step_name = step_name
        self.step_number = step_number


@dataclass(slots=True, frozen=True)
class StepSpec:
    name: str
    model: ModelHint
    continue_conversation: bool = False

    @property
    def is_commit(self) -> bool:
        return "Commit" in self.name


# Step 1 is named after the task at run time.
PIPELINE: tuple[StepSpec, ...] = (
    StepSpec("Implement task", THINKING),
    StepSpec("Ensure completeness", THINKING),
    StepSpec("Lint & test", FAST, continue_conversation=True),
    StepSpec("Code review", THINKING),
    StepSpec("Apply fixes", FAST, continue_conversation=True),
    StepSpec("Verify fixes", FAST, continue_conversation=True),
    StepSpec("Update docs", FAST, continue_conversation=True),
    StepSpec("Commit code", FAST),
    StepSpec("Update memory", FAST, continue_conversation=True),
    StepSpec("Commit memory", FAST, continue_conversation=True),
)
STEP_COUNT = len(PIPELINE)


def step_name(step: int) -> str:
    """Name of pipeline step ``step`` (1-indexed), or ``""`` when out of range."""
    if 1 <= step <= STEP_COUNT:
        return PIPELINE[step - 1].name
    return ""


def build_prompt(base: str, *, no_commit: bool = False) -> str:
    parts = [base] if base else []
    if no_commit:
        parts.append(NO_COMMIT_SUFFIX)
    parts.append(AUTONOMOUS_SUFFIX)
    return " ".join(parts)


def step_args(prompt: str, *, continue_conversation: bool) -> list[str]:
    return [CONTINUE_FLAG, prompt] if continue_conversation else [prompt]


@dataclass(slots=True)
class StepContext:
    """Step position shared with the directive reader thread."""

    current: int = 0
    total: int = 0
    name: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set(self, current: int, total: int, name: str) -> None:
        with self._lock:
            self.current = current
            self.total = total
            self.name = name

    def get(self) -> tuple[int, int, str]:
        with self._lock:
            return self.current, self.total, self.name


class StepRunner:
    def __init__(self, executor: AgentExecutor, output: TextIO) -> None:
        self.executor = executor
        self.output = output

    async def run_step(self, name: str, model: ModelHint, *args: str) -> None:
        self.output.write(ui.step(name))
        try:
            await self.executor.run(self.output, model, *args)
        except Exception as exc:
            raise StepError(f'step "{name}" failed: {exc}', step_name=name) from exc

    async def run_step_numbered(
        self,
        current: int,
        total: int,
        name: str,
        model: ModelHint,
        *args: str,
    ) -> None:
        self.output.write(ui.step_numbered(current, total, name))
        try:
            await self.executor.run(self.output, model, *args)
        except Exception as exc:
            raise StepError(
                f'step {current}/{total} "{name}" failed: {exc}',
                step_name=name,
                step_number=current,
            ) from exc
