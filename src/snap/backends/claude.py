from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TextIO

from snap import ui
from snap.backends.base import AgentExecutor, ModelHint, stream_process

CLAUDE_MODELS: dict[str, str] = {"fast": "haiku", "thinking": "opus"}
_COMMAND_PREVIEW = 50
_RESULT_PREVIEW = 200


class ClaudeStreamParser:
    """Turns ``--output-format=stream-json`` lines into terminal text."""

    def __init__(self) -> None:
        self.tool_names: dict[str, str] = {}
        self._last_was_tool_result = False

    @staticmethod
    def format_tool_use(block: dict[str, Any]) -> str:
        name = str(block.get("name") or "tool")
        tool_input = block.get("input")
        parts = [name]
        if isinstance(tool_input, dict):
            for key in ("file_path", "pattern"):
                value = tool_input.get(key)
                if isinstance(value, str):
                    parts.append(f"{key}={value}")
            command = tool_input.get("command")
            if isinstance(command, str):
                if len(command) > _COMMAND_PREVIEW:
                    command = command[: _COMMAND_PREVIEW - 3] + "..."
                parts.append(f"command={command}")
        return ui.tool(" ".join(parts)) + "\n"

    @staticmethod
    def format_tool_result(block: dict[str, Any]) -> str:
        content = block.get("content")
        if isinstance(content, list):
            content = "".join(
                item.get("text", "") for item in content if isinstance(item, dict)
            )
        if not isinstance(content, str) or not content.strip():
            return ""
        first_line = content.strip().splitlines()[0]
        if len(first_line) > _RESULT_PREVIEW:
            first_line = first_line[: _RESULT_PREVIEW - 1] + "…"
        if block.get("is_error"):
            return ui.error(first_line) + "\n"
        return ui.info(f"    {first_line}")

    def feed(self, line: str) -> str:
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            return ""
        if not isinstance(event, dict):
            return ""
        message = event.get("message")
        blocks = message.get("content") if isinstance(message, dict) else None
        if not isinstance(blocks, list):
            return ""

        chunks: list[str] = []
        if event.get("type") == "assistant":
            for block in blocks:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "text" and block.get("text"):
                    text = str(block["text"])
                    chunks.append(text if text.endswith("\n") else text + "\n")
                    self._last_was_tool_result = False
                elif block.get("type") == "tool_use":
                    if self._last_was_tool_result:
                        chunks.append("\n")
                    if block.get("id") and block.get("name"):
                        self.tool_names[str(block["id"])] = str(block["name"])
                    chunks.append(self.format_tool_use(block))
                    self._last_was_tool_result = False
        elif event.get("type") == "user":
            for block in blocks:
                if not isinstance(block, dict) or block.get("type") != "tool_result":
                    continue
                # Read results echo whole files back.
                if self.tool_names.get(str(block.get("tool_use_id"))) == "Read":
                    continue
                rendered = self.format_tool_result(block)
                if rendered:
                    chunks.append(rendered)
                    self._last_was_tool_result = True
        return "".join(chunks)


class ClaudeCodeBackend(AgentExecutor):
    name = "claude"

    def __init__(self, binary: str = "claude", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    def build_command(self, model: ModelHint, args: tuple[str, ...] | list[str]) -> list[str]:
        command = [
            self.binary,
            "--dangerously-skip-permissions",
            "--print",
            "--output-format=stream-json",
            "--include-partial-messages",
            "--verbose",
        ]
        resolved = CLAUDE_MODELS.get(model)
        if resolved:
            command.extend(["--model", resolved])
        command.extend(args)
        return command

    async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
        parser = ClaudeStreamParser()
        await stream_process(
            self.build_command(model, args),
            backend=self.name,
            writer=writer,
            render_line=parser.feed,
            cwd=self.working_directory,
        )
