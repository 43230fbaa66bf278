"""
Provider-neutral value objects for agent run contracts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from ..llms.types import Message, MessagePart, ToolDefinition, Usage

ResponseMode = Literal["streaming", "final"]
SteerPhase = Literal["mid_run", "end_of_run"]
RunStatus = Literal["completed", "passed"]


@dataclass(frozen=True, slots=True)
class SteeringMessage:
    """
    Inbound message that arrived while a run was in progress.

    Attributes:
        text: Message text.
        sender_name: Display name of the sender.
    """

    text: str
    sender_name: str


@dataclass(frozen=True, slots=True)
class Continue:
    """Directive: keep going."""


@dataclass(frozen=True, slots=True)
class Pause:
    """Directive: block at the poll point until no longer paused."""


@dataclass(frozen=True, slots=True)
class Cancel:
    """Directive: terminate the run at the poll point."""

    reason: str | None = None


@dataclass(frozen=True, slots=True)
class Steer:
    """
    Directive: fold newly arrived messages into the run.

    `messages` is what the control source saw when polled; the gate still
    drains the queue atomically and only falls back to these when the drain
    comes back empty.
    """

    messages: tuple[SteeringMessage, ...] = ()


Directive: TypeAlias = Continue | Pause | Cancel | Steer

CONTINUE = Continue()
PAUSE = Pause()


@dataclass(frozen=True, slots=True)
class AgentProfile:
    """
    Static agent configuration used to drive model calls.

    Attributes:
        id: Stable agent id used for jobs, limits and sessions.
        name: Display name.
        model: Provider model id for inference turns.
        system_prompt: Base system prompt.
        temperature: Sampling temperature for inference turns.
        max_tokens: Completion token cap for inference turns.
        arbiter_model: Model used for triage and steering decisions;
            defaults to `model`.
    """

    id: str
    name: str
    model: str
    system_prompt: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    arbiter_model: str | None = None


@dataclass(frozen=True, slots=True)
class WorkItem:
    """
    One unit of inbound work.

    Attributes:
        id: Work item id.
        text: Inbound user text.
        parts: Optional multimodal content parts; replaces `text` in the prompt.
        sender_name: Display name of the sender.
        session_key: Conversation/session key used for remote sessions.
        queue_lane: Queue lane the item arrived on.
    """

    id: str
    text: str
    parts: list[MessagePart] | None = None
    sender_name: str | None = None
    session_key: str | None = None
    queue_lane: str | None = None


@dataclass(frozen=True, slots=True)
class RunRequest:
    """
    Everything one run needs, in a single value object.

    Attributes:
        profile: Agent configuration.
        work_item: Inbound work.
        tools: Tool definitions offered to the model.
        response_mode: `final` synthesizes one reply after the loop.
        max_turns: Turn budget; `None` uses the runner settings default.
        skip_triage: Run without consulting the triage gate.
        history: Prior session messages placed before the user message.
        context_preamble: Extra system context placed after the system prompt.
        retry_from_job_id: Failed job whose transcript seeds this run.
        sprite_name: Initial remote machine for tool execution.
        sandbox_name: Initial sandbox name.
        cwd: Initial tracked working directory.
        metadata: Free-form values forwarded to tools and hooks.
    """

    profile: AgentProfile
    work_item: WorkItem
    tools: list[ToolDefinition] = field(default_factory=list)
    response_mode: ResponseMode = "streaming"
    max_turns: int | None = None
    skip_triage: bool = False
    history: list[Message] = field(default_factory=list)
    context_preamble: str | None = None
    retry_from_job_id: str | None = None
    sprite_name: str | None = None
    sandbox_name: str | None = None
    cwd: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TriageResult:
    """
    Outcome of the pre-run triage gate.

    Attributes:
        should_respond: False means the agent passes on this work item.
        reason: Short explanation.
        is_read_only: The work looks like it needs no side effects.
        usage: Token usage of the triage call, when one was made.
        cost_usd: Provider-reported cost of the triage call.
        model: Model that served the triage call.
        duration_ms: Wall time of the triage call.
    """

    should_respond: bool
    reason: str = ""
    is_read_only: bool = False
    usage: Usage | None = None
    cost_usd: float | None = None
    model: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class LoopOutcome:
    """
    Result of one inference loop execution.

    Attributes:
        final_response: Text of the last assistant reply, if any.
        hit_limit: The loop exhausted its turn budget without a natural stop.
        turns: Turns consumed.
        stopped_by_completion: The model finished naturally.
        blocked_by_hook: A `model.pre_call` hook stopped the loop.
        run_messages: Prompt messages from this run's user message onward.
        assistant_message_count: Assistant messages appended during the run.
        tool_message_count: Tool messages appended during the run.
    """

    final_response: str | None
    hit_limit: bool
    turns: int
    stopped_by_completion: bool
    blocked_by_hook: bool = False
    run_messages: list[Message] = field(default_factory=list)
    assistant_message_count: int = 0
    tool_message_count: int = 0


@dataclass(frozen=True, slots=True)
class RunResult:
    """
    Terminal result returned by the orchestrator.

    Attributes:
        job_id: Job created for the run.
        status: `completed`, or `passed` when triage declined the work.
        final_response: Reply to deliver, if any.
        hit_limit: The turn budget was exhausted.
        turns: Turns consumed.
        triage: Triage outcome when the gate ran.
    """

    job_id: str
    status: RunStatus
    final_response: str | None = None
    hit_limit: bool = False
    turns: int = 0
    triage: TriageResult | None = None
