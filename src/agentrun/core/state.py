"""
Mutable per-run state shared by the loop stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..agents.types import RunRequest
from ..llms.types import Message, ToolDefinition
from .sandbox import SessionTracker
from .telemetry import TelemetrySpan


@dataclass(slots=True)
class RunState:
    """
    State threaded through one inference loop.

    Attributes:
        job_id: Job being executed.
        request: The run request.
        max_turns: Effective turn budget.
        messages: Prompt messages sent to the model, in order.
        run_start_index: Index of this run's user message in `messages`.
        tools: Tool definitions offered while `tools_enabled` holds.
        tools_enabled: Cleared for the rest of the run once the provider
            rejects tool use.
        sessions: Remote session and cwd tracking.
        turn: Turns consumed so far.
        job_span: Root span of the job.
        turn_span: Span of the current turn.
        final_response: Text of the latest non-empty assistant reply.
        assistant_message_count: Assistant messages appended during the run.
        tool_message_count: Tool messages appended during the run.
        pending_context: System text queued for the next model call.
        tool_error_counts: Occurrences of (tool name, error text) pairs.
    """

    job_id: str
    request: RunRequest
    max_turns: int
    messages: list[Message]
    run_start_index: int
    tools: list[ToolDefinition]
    tools_enabled: bool
    sessions: SessionTracker
    turn: int = 0
    job_span: TelemetrySpan | None = None
    turn_span: TelemetrySpan | None = None
    final_response: str | None = None
    assistant_message_count: int = 0
    tool_message_count: int = 0
    pending_context: list[str] = field(default_factory=list)
    tool_error_counts: dict[tuple[str, str], int] = field(default_factory=dict)

    @property
    def agent_id(self) -> str:
        return self.request.profile.id

    @property
    def active_tools(self) -> list[ToolDefinition] | None:
        if self.tools_enabled and self.tools:
            return self.tools
        return None
