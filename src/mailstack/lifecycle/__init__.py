"""Lifecycle command state machine."""

from mailstack.lifecycle.orchestrator import CommandResult, ConflictStrategy, Orchestrator
from mailstack.lifecycle.prompts import Prompter
from mailstack.lifecycle.state import LifecycleState

__all__ = [
    "CommandResult",
    "ConflictStrategy",
    "LifecycleState",
    "Orchestrator",
    "Prompter",
]
