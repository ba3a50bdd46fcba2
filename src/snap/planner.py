"""Planning pipeline.

Phase 1 gathers requirements in a conversation with the agent (skipped when
a brief file is supplied). Phase 2 generates the planning documents through
a fixed four-step graph whose second step runs two fresh conversations in
parallel.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from snap import prompts, ui
from snap.backends.base import CONTINUE_FLAG, THINKING, AgentExecutor, ModelHint
from snap.workflow.steps import build_prompt, step_args

logger = logging.getLogger(__name__)

DONE_COMMAND = "/done"
PLAN_PROMPT = "snap plan> "
TASK_ROW_PATTERN = re.compile(r"^\|\s*(\d+)\s*\|")


class PlanError(RuntimeError):
    """Raised when an agent call in the planning pipeline fails."""


@dataclass(slots=True, frozen=True)
class ParallelTask:
    name: str
    model: ModelHint
    args: tuple[str, ...]


@dataclass(slots=True)
class ParallelResult:
    name: str
    output: io.StringIO = field(default_factory=io.StringIO)
    elapsed: float = 0.0
    error: Exception | None = None


async def run_parallel(
    executor: AgentExecutor,
    tasks: list[ParallelTask],
    limit: int = 0,
) -> list[ParallelResult]:
    """Run ``tasks`` concurrently, each into its own buffer.

    A failing task does not cancel its siblings; every result is returned in
    input order. ``limit > 0`` bounds how many run at once.
    """
    semaphore = asyncio.Semaphore(limit) if limit > 0 else None

    async def run_one(task: ParallelTask) -> ParallelResult:
        result = ParallelResult(name=task.name)
        started = time.monotonic()
        try:
            if semaphore is None:
                await executor.run(result.output, task.model, *task.args)
            else:
                async with semaphore:
                    await executor.run(result.output, task.model, *task.args)
        except Exception as exc:
            result.error = exc
        result.elapsed = time.monotonic() - started
        return result

    return list(await asyncio.gather(*(run_one(task) for task in tasks)))


@dataclass(slots=True)
class TaskSpec:
    number: int
    filename: str = ""
    name: str = ""
    spec: str = ""


def parse_task_specs(content: str) -> list[TaskSpec]:
    specs: list[TaskSpec] = []
    in_section = False
    for line in content.splitlines():
        trimmed = line.strip()
        if trimmed.startswith(("## G.", "## G ")):
            in_section = True
            continue
        if in_section and trimmed.startswith("## "):
            break
        if not in_section or trimmed.startswith(("| #", "|--", "| -")):
            continue
        match = TASK_ROW_PATTERN.match(trimmed)
        if not match:
            continue
        columns = [column.strip() for column in trimmed.split("|") if column.strip()]
        spec = TaskSpec(number=int(match.group(1)), spec=trimmed)
        if len(columns) >= 2:
            spec.filename = columns[1]
        if len(columns) >= 3:
            spec.name = columns[2]
        specs.append(spec)
    return specs


def extract_task_specs(tasks_dir: Path) -> list[TaskSpec]:
    """Rows of the ``## G.`` task table in ``TASKS.md``."""
    try:
        content = (tasks_dir / "TASKS.md").read_text(encoding="utf-8")
    except OSError as exc:
        raise PlanError(f"read TASKS.md: {exc}") from exc
    return parse_task_specs(content)


def count_tasks_in_summary(tasks_dir: Path) -> int:
    return len(extract_task_specs(tasks_dir))


@dataclass(slots=True, frozen=True)
class PlanStep:
    name: str
    continue_conversation: bool = False
    parallel: tuple[tuple[str, str], ...] = ()
    prompt: str = ""


class Planner:
    def __init__(
        self,
        executor: AgentExecutor,
        session_name: str,
        tasks_dir: Path,
        *,
        output: TextIO | None = None,
        input_stream: TextIO | None = None,
        resume: bool = False,
        after_first_message: Callable[[], None] | None = None,
        brief: str = "",
        brief_file: str = "",
        parallel_limit: int = 0,
    ) -> None:
        self.executor = executor
        self.session_name = session_name
        self.tasks_dir = tasks_dir
        self.output = output if output is not None else sys.stdout
        self.input_stream = input_stream if input_stream is not None else sys.stdin
        self.resume = resume
        self.after_first_message = after_first_message
        self.brief = brief
        self.brief_file = brief_file
        self.parallel_limit = parallel_limit
        self._first_message_done = False

    def _on_first_message(self) -> None:
        if self._first_message_done or self.after_first_message is None:
            return
        self._first_message_done = True
        self.after_first_message()

    async def run(self) -> None:
        if self.brief:
            self.output.write(
                f"Planning session '{self.session_name}' — using {self.brief_file} as input\n"
            )
        elif self.resume:
            self.output.write(f"Resuming planning for session '{self.session_name}'\n")
        else:
            self.output.write(f"Planning session '{self.session_name}'\n")

        if not self.brief:
            try:
                await self.gather_requirements()
            except asyncio.CancelledError:
                self.output.write(ui.interrupted("Planning aborted"))
                raise
        await self.generate_documents()

    async def _read_line(self) -> str:
        """Read one line on a daemon thread so cancellation never waits on stdin."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def deliver(value: str | None, exc: BaseException | None) -> None:
            if future.done():
                return
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(value or "")

        def reader() -> None:
            try:
                line = self.input_stream.readline()
            except (OSError, ValueError) as exc:
                result: tuple[str | None, BaseException | None] = (None, exc)
            else:
                result = (line, None)
            try:
                loop.call_soon_threadsafe(deliver, *result)
            except RuntimeError:
                logger.debug("event loop closed before input arrived")

        threading.Thread(target=reader, name="snap-plan-input", daemon=True).start()
        return await future

    async def gather_requirements(self) -> None:
        self.output.write("\nGathering requirements — type /done when ready\n\n")
        args = step_args(prompts.requirements(), continue_conversation=self.resume)
        try:
            await self.executor.run(self.output, THINKING, *args)
        except Exception as exc:
            raise PlanError(f"requirements prompt failed: {exc}") from exc
        self._on_first_message()

        while True:
            self.output.write(f"\n{PLAN_PROMPT}")
            try:
                raw = await self._read_line()
            except (OSError, ValueError) as exc:
                raise PlanError(f"input read error: {exc}") from exc
            if not raw:
                return
            line = raw.strip()
            if line.lower() == DONE_COMMAND:
                return
            if not line:
                continue
            try:
                await self.executor.run(self.output, THINKING, CONTINUE_FLAG, line)
            except Exception as exc:
                raise PlanError(f"chat message failed: {exc}") from exc

    def plan_steps(self) -> list[PlanStep]:
        tasks_dir = str(self.tasks_dir)
        return [
            PlanStep(
                "Generate PRD",
                continue_conversation=not self.brief,
                prompt=prompts.prd(tasks_dir, self.brief),
            ),
            PlanStep(
                "Technology plan & design spec",
                parallel=(
                    ("Technology plan", prompts.technology(tasks_dir)),
                    ("Design spec", prompts.design(tasks_dir)),
                ),
            ),
            PlanStep("Analyze tasks", prompt=prompts.analyze_tasks(tasks_dir)),
            PlanStep(
                "Generate tasks",
                continue_conversation=True,
                prompt=prompts.generate_tasks(tasks_dir),
            ),
        ]

    def _aborted(self, step_number: int, total: int) -> None:
        self.output.write(ui.interrupted(f"Planning aborted at step {step_number}/{total}"))
        self.output.write(f"  Files written so far are preserved in {self.tasks_dir}\n")

    async def generate_documents(self) -> None:
        self.output.write("\nGenerating planning documents...\n\n")
        steps = self.plan_steps()
        total = len(steps)
        for step_number, step in enumerate(steps, start=1):
            self.output.write(ui.step_numbered(step_number, total, step.name))
            started = time.monotonic()
            try:
                if step.parallel:
                    await self._run_parallel_step(step, step_number, total)
                else:
                    args = step_args(
                        build_prompt(step.prompt),
                        continue_conversation=step.continue_conversation,
                    )
                    try:
                        await self.executor.run(self.output, THINKING, *args)
                    except Exception as exc:
                        self.output.write(
                            ui.step_failed("Step failed", time.monotonic() - started) + "\n"
                        )
                        raise PlanError(
                            f'step {step_number}/{total} "{step.name}" failed: {exc}'
                        ) from exc
                    self.output.write(
                        ui.step_complete("Step complete", time.monotonic() - started) + "\n"
                    )
            except asyncio.CancelledError:
                self._aborted(step_number, total)
                raise
            self._on_first_message()

        self.output.write("\n" + ui.complete("Planning complete"))

    async def _run_parallel_step(self, step: PlanStep, step_number: int, total: int) -> None:
        tasks = [
            ParallelTask(name=name, model=THINKING, args=(build_prompt(prompt),))
            for name, prompt in step.parallel
        ]
        results = await run_parallel(self.executor, tasks, self.parallel_limit)
        failed: list[ParallelResult] = []
        for result in results:
            self.output.write(result.output.getvalue())
            if result.error is None:
                self.output.write(ui.step_complete(result.name, result.elapsed) + "\n")
            else:
                failed.append(result)
                self.output.write(ui.step_failed(result.name, result.elapsed) + "\n")
        if failed:
            detail = "; ".join(f"{result.name}: {result.error}" for result in failed)
            raise PlanError(f'step {step_number}/{total} "{step.name}" failed: {detail}')
