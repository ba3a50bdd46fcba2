from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

ProviderName = Literal["claude", "codex"]

SUPPORTED_PROVIDERS: tuple[str, ...] = ("claude", "codex")
PROVIDER_ENV = "SNAP_PROVIDER"
LOG_LEVEL_ENV = "SNAP_LOG_LEVEL"
DEFAULT_CONFIG_FILE = "snap.toml"


class ConfigError(RuntimeError):
    """Raised when configuration values cannot be resolved."""


@dataclass(slots=True)
class ProviderConfig:
    name: ProviderName = "claude"


@dataclass(slots=True)
class PlanConfig:
    parallel_limit: int = 0


@dataclass(slots=True)
class WorkflowConfig:
    snapshots: bool = True
    summary_max_chars: int = 2000


@dataclass(slots=True)
class LoggingConfig:
    level: str = "WARNING"


@dataclass(slots=True)
class SnapConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    plan: PlanConfig = field(default_factory=PlanConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> SnapConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> SnapConfig:
        return cls(
            provider=ProviderConfig(**data.get("provider", {})),
            plan=PlanConfig(**data.get("plan", {})),
            workflow=WorkflowConfig(**data.get("workflow", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_dict(self) -> dict:
        return {
            "provider": {"name": self.provider.name},
            "plan": {"parallel_limit": self.plan.parallel_limit},
            "workflow": {
                "snapshots": self.workflow.snapshots,
                "summary_max_chars": self.workflow.summary_max_chars,
            },
            "logging": {"level": self.logging.level},
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: SnapConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("provider", "plan", "workflow", "logging"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> SnapConfig:
    if not path.exists():
        return SnapConfig.default()
    return SnapConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: SnapConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")


def normalize_provider(value: str) -> str:
    """Map a user supplied provider value to a supported provider name."""
    normalized = value.strip().lower()
    if normalized == "claude-code":
        normalized = "claude"
    if normalized not in SUPPORTED_PROVIDERS:
        raise ConfigError(
            f"invalid {PROVIDER_ENV} value {value!r} "
            f"(supported: {', '.join(SUPPORTED_PROVIDERS)})"
        )
    return normalized


def resolve_provider(config: SnapConfig, environ: dict[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    override = env.get(PROVIDER_ENV, "").strip()
    if override:
        return normalize_provider(override)
    return normalize_provider(config.provider.name)


def resolve_log_level(config: SnapConfig, environ: dict[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return env.get(LOG_LEVEL_ENV, "").strip() or config.logging.level
