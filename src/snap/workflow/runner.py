"""Resumable per-task workflow runner."""

from __future__ import annotations

import asyncio
import io
import logging
import signal
import sys
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TextIO

import click

from snap import prompts, ui
from snap.backends.base import FAST, AgentExecutor
from snap.directives import DirectiveQueue
from snap.snapshot import SnapshotError, Snapshotter
from snap.state.manager import CorruptStateError, InvalidStateError, StateError, StateStore
from snap.state.types import WorkflowState
from snap.workflow.drain import drain_queue
from snap.workflow.resolver import RESET_HINT, ResumeError, resolve_startup
from snap.workflow.scanner import (
    TaskDirEmptyError,
    TaskInfo,
    diagnose_empty_task_dir,
    format_task_dir_error,
    scan_tasks,
    select_next_task,
)
from snap.workflow.steps import (
    PIPELINE,
    STEP_COUNT,
    StepContext,
    StepRunner,
    StepSpec,
    WorkflowError,
    build_prompt,
    step_args,
)

logger = logging.getLogger(__name__)

DIRECTIVE_HINT = "Type a directive and press Enter to queue it between steps"
_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(slots=True)
class RunnerConfig:
    tasks_dir: Path
    prd_path: Path
    fresh_start: bool = False
    provider_name: str = ""
    is_tty: bool = False
    display_name: str = ""
    summary_max_chars: int = 2000
    handle_signals: bool = True


class Runner:
    """Drives each task through the ten-step pipeline with checkpoints.

    State is saved after every step, so an interrupted run resumes at the
    step that did not finish. Between steps the runner snapshots the working
    tree (when a snapshotter is configured) and runs queued directives.
    """

    def __init__(
        self,
        config: RunnerConfig,
        executor: AgentExecutor,
        state_store: StateStore,
        *,
        output: TextIO | None = None,
        snapshotter: Snapshotter | None = None,
        queue: DirectiveQueue | None = None,
        step_context: StepContext | None = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.state_store = state_store
        self.output = output if output is not None else sys.stdout
        self.snapshotter = snapshotter
        self.queue = queue if queue is not None else DirectiveQueue()
        self.step_context = step_context if step_context is not None else StepContext()
        self.step_runner = StepRunner(executor, self.output)
        self._state: WorkflowState | None = None
        self._installed_signals: list[signal.Signals] = []

    async def run(self) -> None:
        self._install_signal_handlers()
        try:
            await self._run()
        finally:
            self._remove_signal_handlers()

    def _install_signal_handlers(self) -> None:
        if not self.config.handle_signals:
            return
        loop = asyncio.get_running_loop()
        task = asyncio.current_task()
        if task is None:
            return
        for sig in _SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig, task)
            except (NotImplementedError, RuntimeError) as exc:
                logger.debug("cannot handle %s: %s", sig.name, exc)
                continue
            self._installed_signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._installed_signals:
            return
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals = []

    def _on_signal(self, sig: signal.Signals, task: asyncio.Task) -> None:
        # One notice per run; the next signal gets the default disposition.
        self._remove_signal_handlers()
        logger.info("received %s, stopping", sig.name)
        current, total = self._interrupt_position()
        message = ui.interrupted_with_context("Stopped by user", current, total)
        direct = getattr(self.output, "direct", None)
        if callable(direct):
            direct(message)
        else:
            self.output.write(message)
        task.cancel()

    def _interrupt_position(self) -> tuple[int, int]:
        state = self._state
        if state is None:
            try:
                state = self.state_store.load()
            except StateError:
                state = None
        if state is None:
            return 1, STEP_COUNT
        return state.current_step, state.total_steps

    def _load_state(self) -> WorkflowState:
        try:
            state = self.state_store.load()
        except CorruptStateError as exc:
            self.output.write(ui.interrupted(f"State file corrupt ({exc}), starting fresh"))
            self.state_store.reset()
            state = None
        except InvalidStateError as exc:
            raise WorkflowError(f"{exc}; {RESET_HINT}") from exc

        if state is None:
            return WorkflowState.new(
                str(self.config.tasks_dir), str(self.config.prd_path), STEP_COUNT
            )
        state.tasks_dir = str(self.config.tasks_dir)
        state.prd_path = str(self.config.prd_path)
        if state.total_steps != STEP_COUNT and state.current_step <= STEP_COUNT + 1:
            state.total_steps = STEP_COUNT
        return state

    def select_idle_task(
        self, state: WorkflowState, tasks: list[TaskInfo] | None = None
    ) -> TaskInfo | None:
        """Point ``state`` at the next incomplete task, or finish the run."""
        if tasks is None:
            tasks = scan_tasks(self.config.tasks_dir)
        if not tasks:
            hints = diagnose_empty_task_dir(self.config.tasks_dir)
            raise TaskDirEmptyError(format_task_dir_error(self.config.tasks_dir, hints))
        task = select_next_task(tasks, state.completed_task_ids)
        if task is None:
            self.output.write(ui.complete("All tasks implemented!"))
            self.state_store.reset()
            return None
        state.current_task_id = task.id
        state.current_task_file = task.filename
        state.current_step = 1
        state.total_steps = STEP_COUNT
        return task

    async def _run(self) -> None:
        if self.config.fresh_start:
            self.output.write(ui.info("Fresh start requested, deleting existing state"))
            self.state_store.reset()

        state = self._load_state()
        self._state = state
        try:
            target = resolve_startup(state, self.config.tasks_dir)
        except ResumeError as exc:
            raise ResumeError(f"cannot resume: {exc}") from exc

        if target.resume:
            if state.last_error:
                self.output.write(ui.info(f"Last error: {state.last_error}"))
            task_count = target.task_count
            action = f"resuming {target.task_id} from step {target.step}"
        else:
            tasks = scan_tasks(self.config.tasks_dir)
            task = self.select_idle_task(state, tasks)
            if task is None:
                return
            task_count = len(tasks)
            action = f"starting {task.id}"

        summary = ui.format_startup_summary(
            self.config.display_name,
            self.config.provider_name,
            task_count,
            len(state.completed_task_ids),
            action,
        )
        self.output.write(summary + "\n")
        if self.config.is_tty and not target.resume:
            self.output.write(ui.info(DIRECTIVE_HINT))

        while True:
            if not state.current_task_id and self.select_idle_task(state) is None:
                return
            try:
                await self.run_iteration(state)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                state.mark_step_failed(exc)
                try:
                    self.state_store.save(state)
                except StateError as save_exc:
                    click.echo(ui.error(f"Failed to save error state: {save_exc}"), err=True)
                raise WorkflowError(f"iteration failed: {exc}") from exc

    def _task_path(self, state: WorkflowState) -> Path | None:
        if not state.current_task_file:
            return None
        return self.config.tasks_dir / state.current_task_file

    def build_steps(self, state: WorkflowState) -> list[tuple[StepSpec, str]]:
        task_path = self._task_path(state)
        path_text = str(task_path) if task_path is not None else ""
        label = state.current_task_id or "next task"
        step_prompts = [
            prompts.implement(str(self.config.prd_path), path_text, state.current_task_id),
            prompts.ensure_completeness(path_text, state.current_task_id),
            prompts.lint_and_test(),
            prompts.code_review(),
            prompts.apply_fixes(),
            prompts.lint_and_test(),
            prompts.update_docs(),
            prompts.commit(),
            prompts.memory_update(),
            prompts.commit(),
        ]
        specs = list(PIPELINE)
        specs[0] = replace(specs[0], name=f"Implement {label}")
        return list(zip(specs, step_prompts))

    async def summarize_task(self, task_path: Path | None) -> str:
        """Ask the fast model for a one-line description; ``""`` on any failure."""
        if task_path is None:
            return ""
        try:
            content = task_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.debug("task summary skipped: %s", exc)
            return ""
        content = content[: self.config.summary_max_chars]
        buffer = io.StringIO()
        try:
            await self.executor.run(buffer, FAST, build_prompt(prompts.task_summary(content)))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("task summary failed: %s", exc)
            return ""
        for line in ui.strip_colors(buffer.getvalue()).splitlines():
            if line.strip():
                return line.strip()
        return ""

    async def run_iteration(self, state: WorkflowState) -> None:
        started = time.monotonic()
        steps = self.build_steps(state)
        total = len(steps)
        state.total_steps = total
        if state.current_step > total:
            # Every step already ran; only the completion bookkeeping is left.
            state.complete_current_task()
            self.state_store.save(state)
            return

        label = state.current_task_id or "next task"
        description = ""
        if state.current_step == 1:
            description = await self.summarize_task(self._task_path(state))
        self.output.write(ui.header(f"Implementing {label}", description))
        if state.current_step > 1:
            resume_name = steps[state.current_step - 1][0].name
            self.output.write(ui.info(f"Resuming from step {state.current_step}: {resume_name}"))
        self.state_store.save(state)

        for index in range(state.current_step, total + 1):
            spec, base_prompt = steps[index - 1]
            self.step_context.set(index, total, spec.name)
            prompt = build_prompt(base_prompt, no_commit=not spec.is_commit)
            await self.step_runner.run_step_numbered(
                index,
                total,
                spec.name,
                spec.model,
                *step_args(prompt, continue_conversation=spec.continue_conversation),
            )
            await self._after_step(state, index, total, spec)

        self.output.write(
            ui.complete_with_duration("Iteration complete", time.monotonic() - started)
        )
        state.complete_current_task()
        self.state_store.save(state)

    async def _after_step(
        self, state: WorkflowState, index: int, total: int, spec: StepSpec
    ) -> None:
        if self.snapshotter is not None and not spec.is_commit:
            message = f"snap: {state.current_task_id} step {index}/{total} — {spec.name}"
            try:
                created = await self.snapshotter.capture(message)
            except SnapshotError as exc:
                logger.warning("snapshot after step %d failed: %s", index, exc)
                self.output.write(ui.info(f"  snapshot skipped: {exc}"))
            else:
                if created:
                    self.output.write(ui.info("  snapshot saved"))

        errors = await drain_queue(self.queue, self.step_runner, self.output)
        if any(isinstance(err, asyncio.CancelledError) for err in errors):
            raise asyncio.CancelledError()
        if errors:
            click.echo(f"{len(errors)} queued prompt(s) failed", err=True)

        state.mark_step_complete()
        try:
            self.state_store.save(state)
        except StateError as exc:
            raise WorkflowError(f"failed to save state after step {index}: {exc}") from exc
