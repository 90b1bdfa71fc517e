"""Exceptions that cross the orchestrator boundary.

Only configuration problems and persistence failures are raised out of a
turn; data-fetch and tool failures are folded into conversation state as text.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""

    pass


class ConfigurationError(OrchestratorError):
    """Raised when a turn cannot start because its configuration is invalid."""

    pass


class ThreadIdentityError(ConfigurationError):
    """Raised when session identifiers change within an existing thread."""

    pass


class CheckpointWriteError(OrchestratorError):
    """Raised when a checkpoint could not be persisted."""

    pass


class ModelInvocationError(OrchestratorError):
    """Raised when the model back-end fails during a turn."""

    pass
