"""
Run-level contracts: value objects, errors, prompts, retry seeding, steering
and triage arbiters.
"""

from .arbiter import (
    STEER_DECISIONS,
    ActiveWork,
    RoutingArbiter,
    RoutingOutcome,
    RoutingSpec,
    SteerArbiter,
    SteerArbiterInput,
    SteerArbiterResult,
    decide_steering_action,
    normalize_route_label,
)
from .errors import (
    AgentBudgetExceededError,
    AgentCancelledError,
    AgentConfigurationError,
    AgentError,
    AgentExecutionError,
    ModelCallFailedError,
    PostProcessingError,
)
from .retry_seed import RetrySeed, build_retry_seed, build_retry_seed_from_job
from .triage import ArbiterTriageGate, TriageGate
from .types import (
    CONTINUE,
    PAUSE,
    AgentProfile,
    Cancel,
    Continue,
    Directive,
    LoopOutcome,
    Pause,
    RunRequest,
    RunResult,
    Steer,
    SteeringMessage,
    TriageResult,
    WorkItem,
)

__all__ = [
    "ActiveWork",
    "AgentBudgetExceededError",
    "AgentCancelledError",
    "AgentConfigurationError",
    "AgentError",
    "AgentExecutionError",
    "AgentProfile",
    "ArbiterTriageGate",
    "CONTINUE",
    "Cancel",
    "Continue",
    "Directive",
    "LoopOutcome",
    "ModelCallFailedError",
    "PAUSE",
    "Pause",
    "PostProcessingError",
    "RetrySeed",
    "RoutingArbiter",
    "RoutingOutcome",
    "RoutingSpec",
    "RunRequest",
    "RunResult",
    "STEER_DECISIONS",
    "Steer",
    "SteerArbiter",
    "SteerArbiterInput",
    "SteerArbiterResult",
    "SteeringMessage",
    "TriageGate",
    "TriageResult",
    "WorkItem",
    "build_retry_seed",
    "build_retry_seed_from_job",
    "decide_steering_action",
    "normalize_route_label",
]
