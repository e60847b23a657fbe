"""
Orchestrator Errors

Exception types raised by the session orchestrator.

Remote agent failures are NOT exceptions: the gateway turns them into a
failed AgentResult so every caller joined on a request sees the same value.
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""


class ConfigurationError(OrchestratorError):
    """
    Programming error in the orchestrator wiring.

    Raised for unknown agent identities or invalid request parameters.
    Never retried and never turned into a user-facing message.
    """


class PersistenceError(OrchestratorError):
    """The progress store rejected a read, upsert or delete."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class InvalidTransitionError(OrchestratorError):
    """An action was attempted in a phase that does not allow it."""

    def __init__(self, action: str, phase: str):
        super().__init__(f"Action '{action}' is not allowed in phase {phase}")
        self.action = action
        self.phase = phase
