from snap.state.manager import (
    CorruptStateError,
    InvalidStateError,
    StateError,
    StateManager,
    StateStore,
)
from snap.state.types import WorkflowState

__all__ = [
    "CorruptStateError",
    "InvalidStateError",
    "StateError",
    "StateManager",
    "StateStore",
    "WorkflowState",
]
