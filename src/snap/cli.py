from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from snap import session, ui
from snap.backends import AgentExecutor, BackendExecutionError, ProviderError, build_executor, validate_cli
from snap.config import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    SnapConfig,
    load_config,
    resolve_log_level,
    resolve_provider,
    save_config,
)
from snap.directives import DirectiveQueue, DirectiveReader
from snap.log import configure_logging
from snap.planner import PlanError, Planner, count_tasks_in_summary
from snap.snapshot import SnapshotError, Snapshotter
from snap.state import CorruptStateError, InvalidStateError, StateError, StateManager
from snap.workflow import Runner, RunnerConfig, StepContext, WorkflowError, step_name

logger = logging.getLogger(__name__)

LEGACY_TASKS_DIR = "docs/tasks"
EXIT_CANCELLED = 130
NO_SESSIONS_MESSAGE = "no sessions found\n\nTo create a session:\n  snap new <name>"

PRD_TEMPLATE = """# Product Requirements

## Summary

Describe the product or feature at a high level. What problem does it solve?

## Goals

1. Goal one
2. Goal two

## Non-goals

- What this project is NOT trying to do

## Requirements

### Must have

- Requirement one
- Requirement two

### Should have

- Nice-to-have requirement
"""

TASK_TEMPLATE = """# Task 1: <title>

## Objective

Describe what this task accomplishes in one sentence.

## Requirements

- Requirement one
- Requirement two

## Acceptance Criteria

- [ ] Criterion one
- [ ] Criterion two
"""

_USER_ERRORS = (
    session.SessionError,
    StateError,
    WorkflowError,
    PlanError,
    ProviderError,
    ConfigError,
    BackendExecutionError,
    SnapshotError,
)


class CommandError(click.ClickException):
    """Click error whose message may already carry its own ``Error:`` prefix."""

    def show(self, file: Any = None) -> None:
        message = self.format_message()
        if not message.startswith("Error:"):
            message = f"Error: {message}"
        click.echo(message, err=True)


@dataclass(slots=True)
class AppContext:
    root: Path
    config_path: Path
    config: SnapConfig


@dataclass(slots=True)
class RunTarget:
    store: StateManager
    tasks_dir: Path
    display_name: str


def _resolve_config_path(root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _build_backend(provider: str, root: Path) -> AgentExecutor:
    return build_executor(provider, root)


def _stdin_is_tty() -> bool:
    return sys.stdin.isatty()


def _stdout_is_tty() -> bool:
    return sys.stdout.isatty()


def _run_async(coro: Coroutine[Any, Any, None]) -> None:
    try:
        asyncio.run(coro)
    except (asyncio.CancelledError, KeyboardInterrupt):
        sys.exit(EXIT_CANCELLED)
    except _USER_ERRORS as exc:
        raise CommandError(str(exc)) from exc


def _resolve_provider(config: SnapConfig) -> str:
    try:
        provider = resolve_provider(config)
        validate_cli(provider)
    except (ConfigError, ProviderError) as exc:
        raise CommandError(str(exc)) from exc
    return provider


def _multiple_sessions_error(sessions: list[session.SessionInfo], command: str) -> CommandError:
    lines = ["Error: multiple sessions found", "", "Available sessions:"]
    for info in sessions:
        summary = ui.format_task_summary(info.task_count, info.completed_count)
        lines.append(f"  {info.name:<12}  {summary}")
    lines.extend(["", "Specify a session:", f"  snap {command} <name>"])
    return CommandError("\n".join(lines))


def _resolve_named(root: Path, name: str) -> None:
    try:
        session.resolve(root, name)
    except session.SessionError as exc:
        raise CommandError(str(exc)) from exc


def _validate_path(value: str, label: str) -> None:
    if "\n" in value or "\r" in value:
        raise CommandError(f"invalid {label}: path contains invalid characters (newline)")
    cwd = Path.cwd().resolve()
    resolved = (cwd / value).resolve()
    if resolved != cwd and cwd not in resolved.parents:
        raise CommandError(
            f"invalid {label}: path must be within project directory "
            f"(cwd: {cwd}, path: {resolved})"
        )


def _show_state(store: StateManager, as_json: bool) -> None:
    if not store.exists():
        click.echo("No state file exists")
        return
    try:
        state = store.load()
    except InvalidStateError as exc:
        click.echo(f"Warning: {exc}", err=True)
        click.echo(store.state_path.read_text(encoding="utf-8"))
        return
    except (CorruptStateError, StateError) as exc:
        raise CommandError(f"failed to load state: {exc}") from exc
    if state is None:
        click.echo("No state file exists")
        return
    if as_json:
        click.echo(json.dumps(state.to_dict(), indent=2, ensure_ascii=False))
    else:
        click.echo(state.summary(step_name))


def _execute_run(
    app: AppContext,
    target: RunTarget,
    *,
    prd_path: Path,
    fresh: bool,
) -> None:
    provider = _resolve_provider(app.config)
    executor = _build_backend(provider, app.root)

    snapshotter: Snapshotter | None = None
    if app.config.workflow.snapshots and Snapshotter.is_git_repo(app.root):
        snapshotter = Snapshotter(app.root)

    is_tty = _stdin_is_tty()
    queue = DirectiveQueue()
    step_context = StepContext()
    writer: ui.SwitchWriter | None = None
    if is_tty:
        writer = ui.SwitchWriter(sys.stdout, lf_to_crlf=_stdout_is_tty())

    runner = Runner(
        RunnerConfig(
            tasks_dir=target.tasks_dir,
            prd_path=prd_path,
            fresh_start=fresh,
            provider_name=provider,
            is_tty=is_tty,
            display_name=target.display_name,
            summary_max_chars=app.config.workflow.summary_max_chars,
        ),
        executor,
        target.store,
        output=writer,
        snapshotter=snapshotter,
        queue=queue,
        step_context=step_context,
    )

    reader: DirectiveReader | None = None
    if writer is not None:
        reader = DirectiveReader(queue, writer, step_context)
        reader.start()
    try:
        _run_async(runner.run())
    finally:
        if reader is not None:
            reader.stop()


def _resolve_run_target(root: Path, name: str | None) -> RunTarget:
    if name:
        _resolve_named(root, name)
        return RunTarget(
            store=StateManager.in_dir(session.session_dir(root, name)),
            tasks_dir=session.tasks_dir(root, name),
            display_name=name,
        )

    sessions = session.list_sessions(root)
    if len(sessions) == 1:
        return _resolve_run_target(root, sessions[0].name)
    if len(sessions) > 1:
        raise _multiple_sessions_error(sessions, "run")

    legacy = StateManager.legacy(root)
    if legacy.exists() or (root / LEGACY_TASKS_DIR).is_dir():
        return RunTarget(store=legacy, tasks_dir=Path(LEGACY_TASKS_DIR), display_name=LEGACY_TASKS_DIR)
    raise CommandError(NO_SESSIONS_MESSAGE)


@click.group(invoke_without_command=True)
@click.option("--tasks-dir", "-d", default=LEGACY_TASKS_DIR, show_default=True)
@click.option("--prd", "-p", "prd_value", default="", help="PRD path (default: <tasks-dir>/PRD.md).")
@click.option("--fresh", is_flag=True, default=False, help="Ignore existing state.")
@click.option("--show-state", is_flag=True, default=False, help="Show current state and exit.")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
@click.pass_context
def cli(
    ctx: click.Context,
    tasks_dir: str,
    prd_value: str,
    fresh: bool,
    show_state: bool,
    config_value: str,
) -> None:
    """Drive a coding agent through planned tasks, one checkpointed step at a time."""
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    try:
        config = load_config(config_path)
    except (OSError, TypeError, ValueError) as exc:
        raise CommandError(f"failed to load {config_path.name}: {exc}") from exc
    configure_logging(resolve_log_level(config))
    ctx.obj = AppContext(root=root, config_path=config_path, config=config)
    if ctx.invoked_subcommand is not None:
        return

    store = StateManager.legacy(root)
    if show_state:
        _show_state(store, as_json=True)
        return

    prd_path = prd_value or str(Path(tasks_dir) / "PRD.md")
    _validate_path(tasks_dir, "tasks directory")
    _validate_path(prd_path, "PRD path")
    if not Path(prd_path).exists():
        click.echo(f"Warning: file does not exist: {prd_path}", err=True)

    _execute_run(
        ctx.obj,
        RunTarget(store=store, tasks_dir=Path(tasks_dir), display_name=tasks_dir),
        prd_path=Path(prd_path),
        fresh=fresh,
    )


@cli.command("init")
@click.option("--tasks-dir", "-d", default=LEGACY_TASKS_DIR, show_default=True)
@click.pass_obj
def init_command(app: AppContext, tasks_dir: str) -> None:
    directory = Path(tasks_dir)
    directory.mkdir(parents=True, exist_ok=True)

    created = 0
    for filename, content in (("PRD.md", PRD_TEMPLATE), ("TASK1.md", TASK_TEMPLATE)):
        path = directory / filename
        if path.exists():
            continue
        path.write_text(content, encoding="utf-8")
        click.echo(f"Created {path}")
        created += 1

    if not app.config_path.exists():
        save_config(app.config_path, app.config)
        click.echo(f"Created {app.config_path.name}")
        created += 1

    if created == 0:
        click.echo("Already initialized — nothing to create")
        return

    click.echo("")
    click.echo("Next steps:")
    click.echo(f"  1. Edit {directory / 'PRD.md'} with your product context")
    click.echo(f"  2. Edit {directory / 'TASK1.md'} with your first task")
    click.echo("  3. Run: snap")


@cli.command("new")
@click.argument("name")
@click.pass_obj
def new_command(app: AppContext, name: str) -> None:
    try:
        session.create(app.root, name)
    except session.SessionError as exc:
        raise CommandError(str(exc)) from exc

    click.echo(f"Created session '{name}'")
    click.echo("")
    click.echo(ui.info("Next steps:"), nl=False)
    click.echo(ui.info(f"  1. Plan your tasks: snap plan {name}"), nl=False)
    click.echo(ui.info(f"  2. Or add task files manually to .snap/sessions/{name}/tasks/"), nl=False)
    click.echo(ui.info(f"  3. Run tasks: snap run {name}"), nl=False)


@cli.command("list")
@click.pass_obj
def list_command(app: AppContext) -> None:
    sessions = session.list_sessions(app.root)
    if not sessions:
        click.echo(ui.info("No sessions found"), nl=False)
        click.echo("")
        click.echo(ui.info("To create a session:"), nl=False)
        click.echo(ui.info("  snap new <name>"), nl=False)
        return

    summaries = [ui.format_task_summary(info.task_count, info.completed_count) for info in sessions]
    name_width = max(len(info.name) for info in sessions)
    summary_width = max(len(summary) for summary in summaries)
    for info, summary in zip(sessions, summaries):
        click.echo(f"  {info.name:<{name_width}}  {summary:<{summary_width}}  {info.status}")


@cli.command("delete")
@click.argument("name")
@click.option("--force", is_flag=True, default=False, help="Skip the confirmation prompt.")
@click.pass_obj
def delete_command(app: AppContext, name: str, force: bool) -> None:
    _resolve_named(app.root, name)
    if not force:
        answer = click.prompt(
            f"Delete session '{name}' and all its files? (y/N)",
            default="",
            show_default=False,
        )
        if answer.strip().lower() not in ("y", "yes"):
            click.echo("Cancelled")
            return
    try:
        session.delete(app.root, name)
    except session.SessionError as exc:
        raise CommandError(str(exc)) from exc
    click.echo(f"Deleted session '{name}'")


@cli.command("status")
@click.argument("name", required=False)
@click.pass_obj
def status_command(app: AppContext, name: str | None) -> None:
    root = app.root
    if not name:
        sessions = session.list_sessions(root)
        if len(sessions) > 1:
            raise _multiple_sessions_error(sessions, "status")
        if sessions:
            name = sessions[0].name
        elif (root / LEGACY_TASKS_DIR).is_dir():
            raise CommandError(NO_SESSIONS_MESSAGE)
        else:
            session.ensure_default(root)
            name = session.DEFAULT_SESSION

    try:
        info = session.status(root, name)
    except session.SessionError as exc:
        raise CommandError(str(exc)) from exc

    click.echo(ui.key_value("Session", info.name), nl=False)
    click.echo(ui.key_value("Path   ", str(info.tasks_dir)), nl=False)
    if not info.tasks:
        click.echo("")
        click.echo(ui.info(f"No task files found. Run: snap plan {info.name}"), nl=False)
        return

    click.echo("")
    click.echo(ui.info("Tasks:"), nl=False)
    completed = 0
    for task in info.tasks:
        if task.completed:
            completed += 1
            click.echo(ui.task_done(task.id), nl=False)
        elif task.id == info.active_task:
            suffix = f"step {info.active_step}/{info.total_steps}"
            current = step_name(info.active_step)
            if current:
                suffix += f": {current}"
            click.echo(ui.task_active(task.id, suffix), nl=False)
        else:
            click.echo(ui.task_pending(task.id), nl=False)
    click.echo("")
    remaining = len(info.tasks) - completed
    click.echo(ui.info(f"{remaining} tasks remaining, {completed} complete"), nl=False)


def _choose_plan_session(root: Path, name: str) -> str:
    if not session.has_artifacts(root, name):
        return name
    if not _stdin_is_tty():
        raise CommandError(
            f"session {name!r} already has planning artifacts\n\n"
            "To re-plan, clean up first:\n"
            f"  snap delete {name} && snap new {name}\n\n"
            "Or plan in a new session:\n"
            "  snap new <name> && snap plan <name>"
        )

    click.echo(f"Session {name!r} already has planning artifacts.")
    choice = click.prompt(
        "Clean up and re-plan this session, or create a new session?",
        type=click.Choice(["replan", "new"]),
    )
    if choice == "replan":
        session.clean_session(root, name)
        return name

    while True:
        new_name = click.prompt("Session name").strip()
        try:
            session.create(root, new_name)
        except session.SessionError as exc:
            click.echo(ui.error(str(exc)))
            continue
        return new_name


def _print_file_listing(tasks_dir: Path) -> None:
    if not tasks_dir.is_dir():
        return
    files = sorted(entry.name for entry in tasks_dir.iterdir() if not entry.is_dir())
    if not files:
        return
    click.echo("")
    click.echo(ui.info(f"Files in {tasks_dir}:"), nl=False)
    for filename in files:
        click.echo(ui.info(f"  {filename}"), nl=False)


@cli.command("plan")
@click.argument("name", required=False)
@click.option(
    "--from",
    "brief_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Use a requirements brief instead of the interactive conversation.",
)
@click.pass_obj
def plan_command(app: AppContext, name: str | None, brief_path: Path | None) -> None:
    root = app.root
    if name:
        _resolve_named(root, name)
    else:
        sessions = session.list_sessions(root)
        if len(sessions) > 1:
            raise _multiple_sessions_error(sessions, "plan")
        if sessions:
            name = sessions[0].name
        else:
            session.ensure_default(root)
            name = session.DEFAULT_SESSION

    name = _choose_plan_session(root, name)
    provider = _resolve_provider(app.config)

    brief = ""
    if brief_path is not None:
        try:
            brief = brief_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CommandError(f"failed to read input file: {exc}") from exc

    tasks_dir = session.tasks_dir(root, name)
    planner = Planner(
        _build_backend(provider, root),
        name,
        tasks_dir,
        resume=session.has_plan_history(root, name),
        after_first_message=lambda: session.mark_plan_started(root, name),
        brief=brief,
        brief_file=brief_path.name if brief_path is not None else "",
        parallel_limit=app.config.plan.parallel_limit,
    )
    _run_async(planner.run())

    if (tasks_dir / "TASKS.md").is_file():
        try:
            count = count_tasks_in_summary(tasks_dir)
        except PlanError as exc:
            logger.debug("task table unreadable: %s", exc)
        else:
            if count:
                click.echo("")
                click.echo(ui.info(f"{count} tasks listed in TASKS.md"), nl=False)
    _print_file_listing(tasks_dir)
    click.echo("")
    click.echo(ui.info(f"Run: snap run {name}"), nl=False)


@cli.command("run")
@click.argument("name", required=False)
@click.option("--fresh", is_flag=True, default=False, help="Reset state before running.")
@click.option("--show-state", is_flag=True, default=False, help="Show current state and exit.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print state as JSON.")
@click.option("--prd", "-p", "prd_value", default="", help="PRD path (default: <tasks-dir>/PRD.md).")
@click.pass_obj
def run_command(
    app: AppContext,
    name: str | None,
    fresh: bool,
    show_state: bool,
    as_json: bool,
    prd_value: str,
) -> None:
    target = _resolve_run_target(app.root, name)
    if show_state:
        _show_state(target.store, as_json)
        return

    prd_path = Path(prd_value) if prd_value else target.tasks_dir / "PRD.md"
    if prd_value:
        _validate_path(prd_value, "PRD path")
        if not prd_path.exists():
            click.echo(f"Warning: file does not exist: {prd_path}", err=True)
    _execute_run(app, target, prd_path=prd_path, fresh=fresh)


def main() -> None:
    cli()
