from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Protocol

from snap.session import GITIGNORE_CONTENT, SNAP_DIR, STATE_FILE
from snap.state.types import WorkflowState

logger = logging.getLogger(__name__)


class StateError(RuntimeError):
    """Raised when workflow state cannot be read or written."""


class CorruptStateError(StateError):
    """Raised when the state file exists but cannot be parsed."""


class InvalidStateError(StateError):
    """Raised when a state record violates its invariants."""


class StateStore(Protocol):
    def load(self) -> WorkflowState | None: ...

    def save(self, state: WorkflowState) -> None: ...

    def reset(self) -> None: ...

    def exists(self) -> bool: ...


class StateManager:
    """Atomic JSON persistence for a single :class:`WorkflowState`."""

    def __init__(self, state_dir: Path, *, write_gitignore: bool = False) -> None:
        self.state_dir = state_dir
        self.state_path = state_dir / STATE_FILE
        self._write_gitignore = write_gitignore

    @classmethod
    def legacy(cls, project_root: Path) -> StateManager:
        """Store at ``<root>/.snap/state.json`` next to a catch-all ``.gitignore``."""
        return cls(project_root / SNAP_DIR, write_gitignore=True)

    @classmethod
    def in_dir(cls, directory: Path) -> StateManager:
        return cls(directory)

    def exists(self) -> bool:
        return self.state_path.is_file()

    def load(self) -> WorkflowState | None:
        if not self.exists():
            return None
        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateError(f"read state file: {exc}") from exc
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            state = WorkflowState.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise CorruptStateError(f"parse state file: {exc}") from exc
        if not state.is_valid():
            raise InvalidStateError("invalid state: failed validation")
        return state

    def save(self, state: WorkflowState | None) -> None:
        if state is None:
            raise InvalidStateError("cannot save nil state")
        if not state.is_valid():
            raise InvalidStateError("cannot save invalid state")
        self.state_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.to_dict(), ensure_ascii=False, indent=2)
        tmp_path = self.state_path.with_name(
            f"{STATE_FILE}.tmp.{os.getpid()}.{time.time_ns()}"
        )
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.state_path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StateError(f"write state file: {exc}") from exc
        logger.debug("saved state to %s (step %s)", self.state_path, state.current_step)
        if self._write_gitignore:
            self._ensure_gitignore()

    def reset(self) -> None:
        if not self.exists():
            return
        try:
            self.state_path.unlink()
        except OSError as exc:
            raise StateError(f"remove state file: {exc}") from exc
        logger.debug("removed state file %s", self.state_path)

    def _ensure_gitignore(self) -> None:
        gitignore = self.state_dir / ".gitignore"
        if gitignore.exists():
            return
        try:
            gitignore.write_text(GITIGNORE_CONTENT, encoding="utf-8")
        except OSError as exc:
            raise StateError(f"write .gitignore: {exc}") from exc
