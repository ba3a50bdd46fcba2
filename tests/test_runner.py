import asyncio
import io
import json
import os
import signal
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import TextIO

import pytest

from snap.backends.base import AgentExecutor, BackendExecutionError, ModelHint
from snap.directives import DirectiveQueue
from snap.snapshot import Snapshotter
from snap.state import StateManager, WorkflowState
from snap.workflow import (
    AUTONOMOUS_SUFFIX,
    NO_COMMIT_SUFFIX,
    Runner,
    RunnerConfig,
    TaskDirEmptyError,
    WorkflowError,
)

SUMMARY_MARKER = "Summarize the following task"


class FakeExecutor(AgentExecutor):
    name = "fake"

    def __init__(self, on_step: Callable[[int, tuple[str, ...]], None] | None = None) -> None:
        self.on_step = on_step
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    @property
    def step_calls(self) -> list[tuple[str, tuple[str, ...]]]:
        return [call for call in self.calls if SUMMARY_MARKER not in call[1][-1]]

    async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
        self.calls.append((model, args))
        if SUMMARY_MARKER in args[-1]:
            writer.write("Add a login form\n")
            return
        if self.on_step is not None:
            self.on_step(len(self.step_calls), args)
        writer.write("done\n")


def _project(tmp_path: Path, *task_numbers: int) -> Path:
    tasks_dir = tmp_path / "tasks"
    tasks_dir.mkdir(exist_ok=True)
    (tasks_dir / "PRD.md").write_text("# PRD\n", encoding="utf-8")
    for number in task_numbers:
        (tasks_dir / f"TASK{number}.md").write_text(f"# Task {number}\n", encoding="utf-8")
    return tasks_dir


def _runner(
    tmp_path: Path,
    executor: AgentExecutor,
    *,
    fresh: bool = False,
    is_tty: bool = False,
    snapshotter: Snapshotter | None = None,
    queue: DirectiveQueue | None = None,
    handle_signals: bool = False,
) -> tuple[Runner, StateManager, io.StringIO]:
    tasks_dir = tmp_path / "tasks"
    store = StateManager.in_dir(tmp_path / "session")
    output = io.StringIO()
    runner = Runner(
        RunnerConfig(
            tasks_dir=tasks_dir,
            prd_path=tasks_dir / "PRD.md",
            fresh_start=fresh,
            provider_name="claude",
            is_tty=is_tty,
            display_name="auth",
            handle_signals=handle_signals,
        ),
        executor,
        store,
        output=output,
        snapshotter=snapshotter,
        queue=queue,
    )
    return runner, store, output


def _seed(store: StateManager, tasks_dir: Path, **fields) -> None:
    state = WorkflowState.new(str(tasks_dir), str(tasks_dir / "PRD.md"), 10)
    for key, value in fields.items():
        setattr(state, key, value)
    store.save(state)


def test_full_iteration_follows_pipeline_shape(tmp_path: Path) -> None:
    _project(tmp_path, 1)
    executor = FakeExecutor()
    runner, store, output = _runner(tmp_path, executor, is_tty=True)

    asyncio.run(runner.run())

    calls = executor.step_calls
    assert len(calls) == 10
    assert [model for model, _ in calls] == [
        "thinking", "thinking", "fast", "thinking", "fast",
        "fast", "fast", "fast", "fast", "fast",
    ]
    assert [args[0] == "-c" for _, args in calls] == [
        False, False, True, False, True, True, True, False, True, True,
    ]
    for index, (_, args) in enumerate(calls, start=1):
        assert args[-1].endswith(AUTONOMOUS_SUFFIX)
        assert (NO_COMMIT_SUFFIX in args[-1]) is (index not in (8, 10))
    assert "TASK1.md" in calls[0][1][-1]
    assert calls[2][1][-1] == calls[5][1][-1]

    text = output.getvalue()
    assert "snap: auth | claude | 1 tasks (0 done) | starting TASK1" in text
    assert "Type a directive and press Enter to queue it between steps" in text
    assert "Implementing TASK1" in text
    assert "Add a login form" in text
    assert "Step 10/10: Commit memory" in text
    assert "All tasks implemented!" in text
    assert store.exists() is False


def test_state_is_checkpointed_before_each_step(tmp_path: Path) -> None:
    _project(tmp_path, 1, 2)
    store = StateManager.in_dir(tmp_path / "session")
    seen: list[tuple[str, int]] = []

    def record(_: int, __: tuple[str, ...]) -> None:
        payload = json.loads(store.state_path.read_text(encoding="utf-8"))
        seen.append((payload["current_task_id"], payload["current_step"]))
        assert "last_error" not in payload

    runner, _, _ = _runner(tmp_path, FakeExecutor(on_step=record))
    asyncio.run(runner.run())

    assert seen == [("TASK1", step) for step in range(1, 11)] + [
        ("TASK2", step) for step in range(1, 11)
    ]


def test_resume_continues_from_saved_step(tmp_path: Path) -> None:
    tasks_dir = _project(tmp_path, 1, 2)
    executor = FakeExecutor()
    runner, store, output = _runner(tmp_path, executor)
    _seed(
        store,
        tasks_dir,
        current_task_id="TASK2",
        current_step=5,
        completed_task_ids=["TASK1"],
        last_error="previous failure",
    )

    asyncio.run(runner.run())

    text = output.getvalue()
    assert "resuming TASK2 from step 5" in text
    assert "Last error: previous failure" in text
    assert "Resuming from step 5: Apply fixes" in text
    assert "Type a directive" not in text
    assert len(executor.step_calls) == 6
    assert len(executor.calls) == 6
    assert "snap: auth | claude | 2 tasks (1 done) | resuming TASK2 from step 5" in text
    assert "All tasks implemented!" in text


def test_resume_after_last_step_only_completes_task(tmp_path: Path) -> None:
    tasks_dir = _project(tmp_path, 1, 2)
    executor = FakeExecutor()
    runner, store, output = _runner(tmp_path, executor)
    _seed(store, tasks_dir, current_task_id="TASK1", current_task_file="TASK1.md", current_step=11)
    seen_completed: list[list[str]] = []

    def record(_: int, __: tuple[str, ...]) -> None:
        payload = json.loads(store.state_path.read_text(encoding="utf-8"))
        seen_completed.append(payload["completed_task_ids"])

    executor.on_step = record
    asyncio.run(runner.run())

    assert seen_completed[0] == ["TASK1"]
    assert len(executor.step_calls) == 10
    # Only TASK2 reaches the agent: its summary, then its ten steps.
    assert len(executor.calls) == 11
    first_prompt = executor.calls[0][1][-1]
    assert SUMMARY_MARKER in first_prompt
    assert "# Task 2" in first_prompt
    assert "Implementing TASK1" not in output.getvalue()


def test_fresh_start_discards_saved_progress(tmp_path: Path) -> None:
    tasks_dir = _project(tmp_path, 1)
    runner, store, output = _runner(tmp_path, FakeExecutor(), fresh=True)
    _seed(store, tasks_dir, current_task_id="TASK1", current_step=5)

    asyncio.run(runner.run())

    text = output.getvalue()
    assert "Fresh start requested" in text
    assert "starting TASK1" in text
    assert "resuming" not in text


def test_step_failure_records_error_and_stops(tmp_path: Path) -> None:
    _project(tmp_path, 1)

    class FailingExecutor(FakeExecutor):
        async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
            await super().run(writer, model, *args)
            if len(self.step_calls) == 3:
                raise BackendExecutionError("exit status 2", backend="fake", exit_code=2)

    runner, store, _ = _runner(tmp_path, FailingExecutor())

    with pytest.raises(WorkflowError) as excinfo:
        asyncio.run(runner.run())

    assert 'step 3/10 "Lint & test" failed' in str(excinfo.value)
    state = store.load()
    assert state.current_task_id == "TASK1"
    assert state.current_step == 3
    assert "exit status 2" in state.last_error


def test_cancellation_propagates_and_keeps_checkpoint(tmp_path: Path) -> None:
    _project(tmp_path, 1)

    class CancelledExecutor(FakeExecutor):
        async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
            await super().run(writer, model, *args)
            if len(self.step_calls) == 2:
                raise asyncio.CancelledError()

    runner, store, _ = _runner(tmp_path, CancelledExecutor())

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(runner.run())

    state = store.load()
    assert state.current_step == 2
    assert state.last_error == ""


def test_signal_prints_notice_and_cancels(tmp_path: Path) -> None:
    _project(tmp_path, 1)

    class BlockingExecutor(FakeExecutor):
        async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
            await super().run(writer, model, *args)
            if self.step_calls:
                os.kill(os.getpid(), signal.SIGINT)
                await asyncio.sleep(30)

    runner, store, output = _runner(tmp_path, BlockingExecutor(), handle_signals=True)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(runner.run())

    assert "Stopped by user" in output.getvalue()
    assert "State saved at step 1/10" in output.getvalue()
    assert store.load().current_step == 1


def test_queued_directives_run_between_steps(tmp_path: Path) -> None:
    _project(tmp_path, 1)
    queue = DirectiveQueue()

    def enqueue_once(step: int, _: tuple[str, ...]) -> None:
        if step == 1:
            queue.enqueue("also update the changelog")

    executor = FakeExecutor(on_step=enqueue_once)
    runner, _, output = _runner(tmp_path, executor, queue=queue)

    asyncio.run(runner.run())

    prompts = [args[-1] for _, args in executor.step_calls]
    assert prompts[1].startswith("also update the changelog")
    assert executor.step_calls[1][1][0] == "-c"
    assert len(prompts) == 11
    assert "Running queued prompt (1/1)" in output.getvalue()


def test_empty_task_dir_reports_hints(tmp_path: Path) -> None:
    tasks_dir = _project(tmp_path)
    (tasks_dir / "task1.md").write_text("x", encoding="utf-8")
    runner, _, _ = _runner(tmp_path, FakeExecutor())

    with pytest.raises(TaskDirEmptyError) as excinfo:
        asyncio.run(runner.run())

    assert "no task files found" in str(excinfo.value)
    assert "Found: task1.md (rename to TASK1.md)" in str(excinfo.value)


def test_corrupt_state_resets_and_starts_fresh(tmp_path: Path) -> None:
    _project(tmp_path, 1)
    runner, store, output = _runner(tmp_path, FakeExecutor())
    store.state_dir.mkdir(parents=True)
    store.state_path.write_text("{broken", encoding="utf-8")

    asyncio.run(runner.run())

    assert "State file corrupt" in output.getvalue()
    assert "starting TASK1" in output.getvalue()


def test_invalid_state_aborts_with_hint(tmp_path: Path) -> None:
    tasks_dir = _project(tmp_path, 1)
    runner, store, _ = _runner(tmp_path, FakeExecutor())
    payload = WorkflowState.new(str(tasks_dir), "PRD.md", 10).to_dict()
    payload["current_step"] = 40
    store.state_dir.mkdir(parents=True)
    store.state_path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(WorkflowError) as excinfo:
        asyncio.run(runner.run())

    assert "--fresh" in str(excinfo.value)


def _git(cwd: Path, *args: str) -> str:
    proc = subprocess.run(["git", *args], cwd=cwd, check=True, text=True, capture_output=True)
    return proc.stdout


def test_snapshot_after_every_non_commit_step(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    (repo / "README.md").write_text("seed\n", encoding="utf-8")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-m", "seed")
    (repo / "scratch.txt").write_text("untracked\n", encoding="utf-8")
    _project(tmp_path, 1)

    def touch_readme(step: int, _: tuple[str, ...]) -> None:
        with (repo / "README.md").open("a", encoding="utf-8") as handle:
            handle.write(f"step {step}\n")

    runner, _, _ = _runner(
        tmp_path, FakeExecutor(on_step=touch_readme), snapshotter=Snapshotter(repo)
    )
    asyncio.run(runner.run())

    entries = [line for line in _git(repo, "stash", "list").splitlines() if line]
    messages = sorted(line.split(": ", 1)[1] for line in entries)
    assert len(entries) == 8
    assert "snap: TASK1 step 1/10 — Implement TASK1" in messages
    assert "snap: TASK1 step 9/10 — Update memory" in messages
    assert not any("Commit" in message for message in messages)
    assert "?? scratch.txt" in _git(repo, "status", "--porcelain")
    assert _git(repo, "diff", "--cached", "--name-only") == ""
