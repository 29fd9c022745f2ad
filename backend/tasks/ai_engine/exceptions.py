# tasks/ai_engine/exceptions.py
"""
Exception hierarchy for the task decision engine.

Input errors are programmer errors and propagate to the caller.
Provider errors describe a failed primary decision path; the orchestrator
always absorbs them and falls back to the rule engine.
"""


class TaskEngineError(Exception):
    """Base class for all decision engine errors."""

    pass


class InvalidTaskInputError(TaskEngineError, ValueError):
    """Raised when a caller passes malformed or incomplete task input."""

    pass


class ProviderError(TaskEngineError):
    """Base class for primary decision provider failures."""

    pass


class ProviderUnavailableError(ProviderError):
    """Raised when the primary provider cannot be reached or rejects the call."""

    pass


class ProviderResponseError(ProviderError):
    """Raised when the primary provider answers with an unusable payload."""

    pass
