from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Literal, TextIO

logger = logging.getLogger(__name__)

ModelHint = Literal["fast", "thinking"]

FAST: ModelHint = "fast"
THINKING: ModelHint = "thinking"
CONTINUE_FLAG = "-c"

_STREAM_LIMIT = 10 * 1024 * 1024
_TERMINATE_GRACE_SECONDS = 5.0


class BackendExecutionError(RuntimeError):
    """Raised when an agent subprocess exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code


class BackendProcessError(BackendExecutionError):
    """Raised when the agent process cannot be started or piped."""


class AgentExecutor(ABC):
    """Runs one agent turn and streams its rendered output.

    ``args`` end with the prompt text. The ``-c`` sentinel anywhere in
    ``args`` asks the adapter to continue the previous conversation.
    """

    name: str = "agent"

    @abstractmethod
    async def run(self, writer: TextIO, model: ModelHint, *args: str) -> None:
        """Execute the agent, writing output to ``writer`` as it arrives."""


async def stream_process(
    command: list[str],
    *,
    backend: str,
    writer: TextIO,
    render_line: Callable[[str], str],
    cwd: Path | None = None,
) -> None:
    """Spawn ``command``, render each stdout line into ``writer`` and wait for exit.

    Cancelling the awaiting task terminates the child before re-raising.
    """
    logger.debug("%s start: %s", backend, command[:-1])
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_STREAM_LIMIT,
        )
    except FileNotFoundError as exc:
        raise BackendProcessError(
            f"{backend} binary not found: {command[0]}", backend=backend
        ) from exc

    if process.stdout is None or process.stderr is None:
        raise BackendProcessError(f"{backend} process did not expose pipes", backend=backend)

    stderr_task = asyncio.create_task(process.stderr.read())
    try:
        async for raw_line in process.stdout:
            line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            rendered = render_line(line)
            if rendered:
                writer.write(rendered)
                writer.flush()
        return_code = await process.wait()
        stderr_output = (await stderr_task).decode("utf-8", errors="replace").strip()
    except asyncio.CancelledError:
        await _terminate(process)
        stderr_task.cancel()
        raise

    logger.debug("%s exit: %s", backend, return_code)
    if return_code != 0:
        message = f"{backend} command failed with exit code {return_code}"
        if stderr_output:
            message += f" (stderr: {stderr_output})"
        raise BackendExecutionError(message, backend=backend, exit_code=return_code)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        process.kill()
        await process.wait()
