from snap.backends.base import (
    CONTINUE_FLAG,
    FAST,
    THINKING,
    AgentExecutor,
    BackendExecutionError,
    BackendProcessError,
    ModelHint,
)
from snap.backends.claude import ClaudeCodeBackend
from snap.backends.codex import CodexBackend
from snap.backends.providers import ProviderError, build_executor, validate_cli

__all__ = [
    "CONTINUE_FLAG",
    "FAST",
    "THINKING",
    "AgentExecutor",
    "BackendExecutionError",
    "BackendProcessError",
    "ClaudeCodeBackend",
    "CodexBackend",
    "ModelHint",
    "ProviderError",
    "build_executor",
    "validate_cli",
]
