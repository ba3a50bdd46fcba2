from __future__ import annotations

import os
import re
import sys
import threading
from typing import TextIO

import click

SEPARATOR_WIDTH = 70
BOX_WIDTH = 60
_BOX_CONTENT_WIDTH = BOX_WIDTH - 4
_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


def colors_enabled(stream: TextIO | None = None) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    target = stream if stream is not None else sys.stdout
    isatty = getattr(target, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        return False


def _style(
    text: str,
    *,
    fg: str | None = None,
    bold: bool = False,
    dim: bool = False,
) -> str:
    if not text or not colors_enabled():
        return text
    return click.style(text, fg=fg, bold=bold or None, dim=dim or None)


def strip_colors(text: str) -> str:
    return _ANSI_PATTERN.sub("", text)


def format_duration(seconds: float) -> str:
    """Render elapsed seconds as ``45s``, ``2m 34s`` or ``1h 12m``."""
    total = max(0, int(seconds))
    if total == 0:
        return "0s"
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes:
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    return f"{secs}s"


def _truncate(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[: width - 1] + "…"


def header(text: str, description: str = "") -> str:
    title = _style(f"▶ {text}", fg="cyan", bold=True)
    if description:
        desc = _style(_truncate(description, SEPARATOR_WIDTH - 2), dim=True)
        return f"\n\n{title}\n  {desc}\n"
    return f"\n\n{title}\n"


def step(text: str) -> str:
    return "\n" + _style(f"▶ {text}", fg="blue", bold=True) + "\n"


def step_numbered(current: int, total: int, text: str) -> str:
    return "\n" + _style(f"▶ Step {current}/{total}: {text}", fg="blue", bold=True) + "\n"


def success(text: str) -> str:
    return "  " + _style("✓", fg="green", bold=True) + " " + _style(strip_colors(text), dim=True)


def error(text: str) -> str:
    return "  " + _style("✗", fg="red", bold=True) + " " + _style(strip_colors(text), dim=True)


def info(text: str) -> str:
    return _style(strip_colors(text), dim=True) + "\n"


def tool(text: str) -> str:
    return "  " + _style(f"🔧 {strip_colors(text)}", fg="magenta")


def interrupted(text: str) -> str:
    return "\n" + _style(f"⚠ {text}", fg="yellow", bold=True) + "\n"


def interrupted_with_context(text: str, current_step: int, total_steps: int) -> str:
    main_line = _style(f"⚠  {text}", fg="yellow", bold=True)
    context_line = _style(
        f"State saved at step {current_step}/{total_steps} - resume with 'snap run'", dim=True
    )
    return f"\n{main_line}\n   {context_line}\n"


def complete(text: str) -> str:
    return "\n" + _style(f"✨ {text}", fg="green", bold=True) + "\n"


def _right_aligned(prefix: str, duration: str) -> str:
    padding = max(1, SEPARATOR_WIDTH - len(prefix) - len(duration))
    return prefix + " " * padding + _style(duration, dim=True)


def complete_with_duration(text: str, seconds: float) -> str:
    prefix = _style(f"✨ {text}", fg="green", bold=True)
    padding = max(1, SEPARATOR_WIDTH - len(text) - 2 - len(format_duration(seconds)))
    return f"\n{prefix}{' ' * padding}{_style(format_duration(seconds), dim=True)}\n"


def step_complete(text: str, seconds: float) -> str:
    line = _right_aligned(f" ✓ {strip_colors(text)}", format_duration(seconds))
    return _style(line[:3], fg="green", bold=True) + line[3:]


def step_failed(text: str, seconds: float) -> str:
    line = _right_aligned(f" ✗ {strip_colors(text)}", format_duration(seconds))
    return _style(line[:3], fg="red", bold=True) + line[3:]


def key_value(key: str, value: str) -> str:
    return _style(f"{key}:", bold=True) + f" {value}\n"


def task_done(task_id: str) -> str:
    return "  " + _style("✓", fg="green") + f" {task_id}\n"


def task_active(task_id: str, suffix: str) -> str:
    return "  " + _style("▶", fg="cyan", bold=True) + f" {task_id}  " + _style(suffix, dim=True) + "\n"


def task_pending(task_id: str) -> str:
    return "  " + _style("○", dim=True) + f" {task_id}\n"


def format_startup_summary(
    display_name: str,
    provider: str,
    task_count: int,
    done_count: int,
    action: str,
) -> str:
    return f"snap: {display_name} | {provider} | {task_count} tasks ({done_count} done) | {action}"


def format_task_summary(task_count: int, completed_count: int) -> str:
    if task_count == 0:
        return "0 tasks"
    noun = "task" if task_count == 1 else "tasks"
    summary = f"{task_count} {noun}"
    if completed_count > 0:
        summary += f" ({completed_count} done)"
    return summary


def _box_top(title: str) -> str:
    dashes = max(1, BOX_WIDTH - 4 - len(title) - 2)
    return _style(f"┌─ {title} {'─' * dashes}┐", fg="cyan", bold=True) + "\n"


def _box_line(text: str, *, dim: bool = False) -> str:
    fitted = _truncate(text, _BOX_CONTENT_WIDTH)
    padding = " " * max(0, _BOX_CONTENT_WIDTH - len(fitted))
    return _style(f"│ {fitted}{padding} │", fg="cyan", bold=not dim, dim=dim) + "\n"


def _box_bottom() -> str:
    return _style(f"└{'─' * (BOX_WIDTH - 2)}┘", fg="cyan", bold=True)


def queued_prompt(
    prompt: str,
    current_step: int,
    total_steps: int,
    step_name: str,
    queue_length: int,
) -> str:
    noun = "prompt" if queue_length == 1 else "prompts"
    return (
        "\n"
        + _box_top("📌 Queued")
        + _box_line(prompt)
        + _box_line("")
        + _box_line(f"⏳ Waiting for Step {current_step}/{total_steps}: {step_name}", dim=True)
        + _box_line(f"📋 {queue_length} {noun} in queue", dim=True)
        + _box_bottom()
        + "\n"
    )


def queue_running(prompt: str, current: int, total: int) -> str:
    return (
        "\n\n"
        + _box_top(f"📌 Running queued prompt ({current}/{total})")
        + _box_line(prompt)
        + _box_bottom()
        + "\n"
    )


def queue_status(prompts: list[str]) -> str:
    if not prompts:
        return "\n" + _style("📋 Queue empty — no prompts pending", dim=True) + "\n"
    noun = "prompt" if len(prompts) == 1 else "prompts"
    lines = ["\n" + _style(f"📋 Queue ({len(prompts)} {noun} pending):", dim=True)]
    for index, prompt in enumerate(prompts, start=1):
        lines.append(_style(f"  {index}. {prompt}", dim=True))
    return "\n".join(lines) + "\n"


class SwitchWriter:
    """Text writer that can hold output back while the user composes input.

    While paused, writes are buffered and replayed on ``resume``. ``direct``
    always reaches the underlying stream, which is how interruption notices
    stay visible during composition.
    """

    def __init__(self, stream: TextIO, *, lf_to_crlf: bool = False) -> None:
        self._stream = stream
        self._lf_to_crlf = lf_to_crlf
        self._lock = threading.Lock()
        self._paused = False
        self._pending: list[str] = []

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    def _emit(self, text: str) -> None:
        if self._lf_to_crlf:
            text = text.replace("\r\n", "\n").replace("\n", "\r\n")
        self._stream.write(text)
        self._stream.flush()

    def write(self, text: str) -> int:
        with self._lock:
            if self._paused:
                self._pending.append(text)
            else:
                self._emit(text)
        return len(text)

    def flush(self) -> None:
        with self._lock:
            if not self._paused:
                self._stream.flush()

    def isatty(self) -> bool:
        isatty = getattr(self._stream, "isatty", None)
        return bool(isatty and isatty())

    def pause(self) -> None:
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False
            pending, self._pending = self._pending, []
            for text in pending:
                self._emit(text)

    def direct(self, text: str) -> None:
        with self._lock:
            self._emit(text)
