from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Tool execution contracts shared by the run loop and executor implementations.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True, slots=True)
class SandboxSwitch:
    """Request from a tool to move the run onto another sandbox/sprite."""

    sandbox_name: str
    sprite_name: str


@dataclass(frozen=True, slots=True)
class ExternalApiCost:
    """Cost incurred by a tool calling a paid third-party API."""

    provider: str
    operation: str
    cost_usd: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResultMeta:
    """
    Side-channel signals consumed by the run loop and never shown to the model.

    Attributes:
        cwd: Working directory after the call, when the tool tracked one.
        sandbox_switch: Present when the tool switched the active sandbox.
        session_error: Transient session-layer fault (not a command failure).
        session_invalidated: The remote side reset the session after a timeout.
        external_api_cost: Paid API usage to be recorded against the job.
        edit_operation: Name of the file edit performed, for diagnostics.
        hash_mismatch: The edit was rejected because the file changed underneath.
    """

    cwd: Optional[str] = None
    sandbox_switch: Optional[SandboxSwitch] = None
    session_error: bool = False
    session_invalidated: bool = False
    external_api_cost: Optional[ExternalApiCost] = None
    edit_operation: Optional[str] = None
    hash_mismatch: bool = False


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    """
    Standardized result of one tool execution.

    Failed results carry `error`; `output` may still hold partial output.
    """

    success: bool
    output: str = ""
    error: Optional[str] = None
    meta: ToolResultMeta = field(default_factory=ToolResultMeta)

    @staticmethod
    def failure(error: str, *, output: str = "") -> "ToolCallResult":
        return ToolCallResult(success=False, output=output, error=error)


class SandboxSession(Protocol):
    """Handle to a live remote shell session."""

    session_id: str

    async def close(self) -> None:
        ...


@dataclass(frozen=True, slots=True)
class ToolContext:
    """
    Contextual information available to a tool during its execution.

    Attributes:
        job_id: Job the call belongs to.
        agent_id: Agent executing the run.
        tool_call_id: Model-issued id of this call.
        sprite_name: Active sprite (remote machine) name, if any.
        sandbox_name: Active sandbox name, if any.
        cwd: Tracked working directory at call time.
        session: Live remote session, created lazily by the run loop.
        metadata: Free-form values forwarded from the run context.
    """

    job_id: str
    agent_id: str
    tool_call_id: str | None = None
    sprite_name: str | None = None
    sandbox_name: str | None = None
    cwd: str | None = None
    session: SandboxSession | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ToolExecutor(Protocol):
    """Executes one named tool call and always returns a `ToolCallResult`."""

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: ToolContext,
    ) -> ToolCallResult:
        ...


class SandboxSessionManager(Protocol):
    """
    Creates or reuses the remote session owned by a (session_key, agent_id) pair.

    Acquisition must be idempotent: calling it again after a close yields a
    fresh usable session.
    """

    async def acquire(
        self,
        *,
        sprite_name: str,
        session_key: str,
        agent_id: str,
        cwd: str,
    ) -> SandboxSession:
        ...
