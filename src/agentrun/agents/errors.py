"""
Agent-layer error taxonomy.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base exception for all agent-runtime failures."""
    pass


class AgentConfigurationError(AgentError):
    """
    Raised when run configuration is invalid.

    Typical cases:
    - non-positive turn limits
    - unknown response modes
    - malformed environment settings
    """
    pass


class AgentExecutionError(AgentError):
    """Raised for runtime execution failures not tied to configuration."""
    pass


class AgentBudgetExceededError(AgentExecutionError):
    """Raised when the agent's cost limit is exceeded at a turn boundary."""
    pass


class AgentCancelledError(AgentExecutionError):
    """Raised when a run is cancelled by an operator through run control."""

    def __init__(self, message: str = "Run cancelled by operator.") -> None:
        super().__init__(message)


class ModelCallFailedError(AgentExecutionError):
    """Raised when a model call fails through the whole fallback chain."""
    pass


class PostProcessingError(AgentExecutionError):
    """Raised when the single synthesized final reply cannot be produced."""
    pass
