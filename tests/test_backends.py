import asyncio
import io
import json
from pathlib import Path
from typing import Any

import pytest

from snap.backends import (
    BackendExecutionError,
    ClaudeCodeBackend,
    CodexBackend,
    ProviderError,
    build_executor,
    validate_cli,
)
from snap.backends.claude import ClaudeStreamParser
from snap.backends.codex import CodexEventParser, build_command_args


def test_claude_build_command_shape() -> None:
    backend = ClaudeCodeBackend(binary="claude", working_directory=Path("."))
    command = backend.build_command("thinking", ("-c", "implement feature"))

    assert command[0] == "claude"
    assert "--dangerously-skip-permissions" in command
    assert "--output-format=stream-json" in command
    assert command[command.index("--model") + 1] == "opus"
    assert command[-2:] == ["-c", "implement feature"]


def test_claude_fast_model_is_haiku() -> None:
    command = ClaudeCodeBackend().build_command("fast", ("prompt",))

    assert command[command.index("--model") + 1] == "haiku"


def test_codex_translates_continue_flag() -> None:
    assert build_command_args(["-c", "fix it"]) == [
        "exec",
        "resume",
        "--last",
        "--json",
        "--dangerously-bypass-approvals-and-sandbox",
        "fix it",
    ]
    assert build_command_args(["fix it"])[:2] == ["exec", "--json"]


def test_codex_model_precedes_prompt() -> None:
    command = CodexBackend().build_command("thinking", ("write docs",))

    assert command[0] == "codex"
    assert command[-3:] == ["--model", "gpt-5.3-codex", "write docs"]


def test_claude_parser_renders_text_and_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    parser = ClaudeStreamParser()

    text = parser.feed(
        json.dumps(
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Working"}]}}
        )
    )
    tool = parser.feed(
        json.dumps(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {
                            "type": "tool_use",
                            "id": "t1",
                            "name": "Read",
                            "input": {"file_path": "src/app.py"},
                        }
                    ]
                },
            }
        )
    )
    hidden = parser.feed(
        json.dumps(
            {
                "type": "user",
                "message": {
                    "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "file body"}]
                },
            }
        )
    )

    assert text == "Working\n"
    assert "🔧 Read file_path=src/app.py" in tool
    assert hidden == ""
    assert parser.feed("not json") == ""


def test_codex_parser_renders_messages_and_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    parser = CodexEventParser()

    started = parser.feed(
        json.dumps(
            {"type": "item.started", "item": {"type": "command_execution", "command": "pytest -q"}}
        )
    )
    message = parser.feed(
        json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": "All done"}})
    )
    failed = parser.feed(
        json.dumps(
            {
                "type": "item.completed",
                "item": {
                    "type": "command_execution",
                    "status": "failed",
                    "exit_code": 1,
                    "aggregated_output": "E assert 1 == 2\n",
                },
            }
        )
    )

    assert "pytest -q" in started
    assert message == "All done\n"
    assert "command failed (exit 1)" in failed
    assert "E assert 1 == 2" in failed


class FakeStdout:
    def __init__(self, lines: list[bytes]) -> None:
        self._lines = lines
        self._index = 0

    def __aiter__(self) -> "FakeStdout":
        return self

    async def __anext__(self) -> bytes:
        if self._index >= len(self._lines):
            raise StopAsyncIteration
        line = self._lines[self._index]
        self._index += 1
        return line


class FakeStderr:
    def __init__(self, data: bytes = b"") -> None:
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakeProcess:
    def __init__(self, lines: list[bytes], return_code: int = 0, stderr: bytes = b"") -> None:
        self.stdout = FakeStdout(lines)
        self.stderr = FakeStderr(stderr)
        self.returncode: int | None = None
        self._return_code = return_code

    async def wait(self) -> int:
        self.returncode = self._return_code
        return self._return_code


def test_executor_streams_rendered_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    line = json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": "hi"}})

    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        captured["args"] = args
        captured["kwargs"] = kwargs
        return FakeProcess([line.encode() + b"\n", b"\n"])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)
    writer = io.StringIO()

    asyncio.run(CodexBackend().run(writer, "fast", "-c", "hello"))

    assert writer.getvalue() == "hi\n"
    assert captured["args"][:3] == ("codex", "exec", "resume")
    assert captured["kwargs"]["stdin"] == asyncio.subprocess.DEVNULL


def test_executor_reports_non_zero_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        _ = args, kwargs
        return FakeProcess([], return_code=3, stderr=b"quota exceeded\n")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)

    with pytest.raises(BackendExecutionError) as excinfo:
        asyncio.run(ClaudeCodeBackend().run(io.StringIO(), "fast", "hello"))

    assert excinfo.value.exit_code == 3
    assert "exit code 3" in str(excinfo.value)
    assert "quota exceeded" in str(excinfo.value)


def test_validate_cli_reports_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("snap.backends.providers.shutil.which", lambda binary: None)

    with pytest.raises(ProviderError) as excinfo:
        validate_cli("claude")

    message = str(excinfo.value)
    assert message.startswith("Error: claude not found in PATH")
    assert "SNAP_PROVIDER=codex snap" in message


def test_validate_cli_passes_when_binary_found(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("snap.backends.providers.shutil.which", lambda binary: f"/usr/bin/{binary}")

    validate_cli("codex")


def test_build_executor_selects_adapter(tmp_path: Path) -> None:
    assert isinstance(build_executor("claude", tmp_path), ClaudeCodeBackend)
    assert isinstance(build_executor("codex", tmp_path), CodexBackend)
    with pytest.raises(ProviderError):
        build_executor("gemini")
