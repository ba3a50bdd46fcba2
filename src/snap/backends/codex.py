from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TextIO

from snap import ui
from snap.backends.base import CONTINUE_FLAG, AgentExecutor, ModelHint, stream_process

CODEX_MODELS: dict[str, str] = {"fast": "gpt-5.3-codex-spark", "thinking": "gpt-5.3-codex"}
_OUTPUT_PREVIEW_LINES = 5


def build_command_args(args: tuple[str, ...] | list[str]) -> list[str]:
    """Translate workflow args into ``codex exec`` arguments.

    ``-c`` becomes ``exec resume --last``; everything else passes through.
    """
    resume = CONTINUE_FLAG in args
    passthrough = [arg for arg in args if arg != CONTINUE_FLAG]
    if resume:
        base = ["exec", "resume", "--last", "--json", "--dangerously-bypass-approvals-and-sandbox"]
    else:
        base = ["exec", "--json", "--dangerously-bypass-approvals-and-sandbox"]
    return base + passthrough


class CodexEventParser:
    """Turns ``codex exec --json`` JSONL events into terminal text."""

    @staticmethod
    def _format_command_result(item: dict[str, Any]) -> str:
        output = str(item.get("aggregated_output") or "").rstrip("\n")
        exit_code = item.get("exit_code")
        failed = str(item.get("status", "")).lower() == "failed" or (
            isinstance(exit_code, int) and exit_code != 0
        )
        if not failed:
            return ""
        lines = [ui.error(f"command failed (exit {exit_code if exit_code is not None else '?'})")]
        for line in output.splitlines()[-_OUTPUT_PREVIEW_LINES:]:
            lines.append(ui.info(f"    {line}").rstrip("\n"))
        return "\n".join(lines) + "\n"

    def feed(self, line: str) -> str:
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            return ""
        if not isinstance(event, dict):
            return ""
        item = event.get("item")
        if not isinstance(item, dict):
            return ""
        event_type = event.get("type")
        item_type = item.get("type")
        if event_type == "item.started" and item_type == "command_execution":
            command = str(item.get("command") or "").strip()
            return ui.tool(command) + "\n" if command else ""
        if event_type != "item.completed":
            return ""
        if item_type == "agent_message":
            text = str(item.get("text") or "")
            if not text:
                return ""
            return text if text.endswith("\n") else text + "\n"
        if item_type == "command_execution":
            return self._format_command_result(item)
        return ""


class CodexBackend(AgentExecutor):
    name = "codex"

    def __init__(self, binary: str = "codex", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    def build_command(self, model: ModelHint, args: tuple[str, ...] | list[str]) -> list[str]:
        translated = build_command_args(args)
        resolved = CODEX_MODELS.get(model)
        if resolved and translated:
            # Keep the prompt as the final argument.
            translated = [*translated[:-1], "--model", resolved, translated[-1]]
        return [self.binary, *translated]

    async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
        await stream_process(
            self.build_command(model, args),
            backend=self.name,
            writer=writer,
            render_line=CodexEventParser().feed,
            cwd=self.working_directory,
        )
