from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from snap.backends.base import AgentExecutor
from snap.backends.claude import ClaudeCodeBackend
from snap.backends.codex import CodexBackend
from snap.config import SUPPORTED_PROVIDERS


class ProviderError(RuntimeError):
    """Raised when the agent CLI for a provider cannot be used."""


@dataclass(slots=True, frozen=True)
class ProviderInfo:
    binary: str
    display_name: str
    install_url: str
    alternative: str


PROVIDERS: dict[str, ProviderInfo] = {
    "claude": ProviderInfo(
        binary="claude",
        display_name="Claude CLI",
        install_url="https://docs.anthropic.com/en/docs/claude-cli",
        alternative="codex",
    ),
    "codex": ProviderInfo(
        binary="codex",
        display_name="Codex CLI",
        install_url="https://github.com/openai/codex",
        alternative="claude",
    ),
}


def _provider_info(provider: str) -> ProviderInfo:
    info = PROVIDERS.get(provider)
    if info is None:
        raise ProviderError(
            f"unknown provider {provider!r} (supported: {', '.join(SUPPORTED_PROVIDERS)})"
        )
    return info


def validate_cli(provider: str) -> None:
    """Fail fast when the provider binary is not discoverable on PATH."""
    info = _provider_info(provider)
    if shutil.which(info.binary) is None:
        raise ProviderError(
            f"Error: {info.binary} not found in PATH\n\n"
            f"snap requires the {info.display_name} to run. Install it:\n"
            f"  {info.install_url}\n\n"
            "Or use a different provider:\n"
            f"  SNAP_PROVIDER={info.alternative} snap"
        )


def build_executor(provider: str, working_directory: Path | None = None) -> AgentExecutor:
    info = _provider_info(provider)
    if provider == "codex":
        return CodexBackend(binary=info.binary, working_directory=working_directory)
    return ClaudeCodeBackend(binary=info.binary, working_directory=working_directory)
