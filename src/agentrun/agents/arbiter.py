"""
Single-call routing classifiers built on a JSON-constrained model call.

`RoutingArbiter` owns prompt assembly, loose JSON parsing and label
normalization. `SteerArbiter` uses it to decide whether inbound messages
should interrupt a running job; it never raises and never defaults to
interrupting.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from ..llms.provider import ChatProvider
from ..llms.types import ChatRequest, Message, Usage
from ..llms.utils import clip, parse_loose_json
from .types import SteeringMessage

logger = logging.getLogger(__name__)

SteerDecision = Literal["interrupt_now", "do_not_interrupt", "ignore"]
STEER_DECISIONS: tuple[SteerDecision, ...] = ("interrupt_now", "do_not_interrupt", "ignore")
RoutingOutcomeKind = Literal["ok", "error", "invalid_json", "empty_response"]

DEFAULT_STEER_REASON = "Arbiter defaulted to do_not_interrupt."
STEER_FAILED_REASON = "Arbiter failed; defaulting to do_not_interrupt."
STEER_INVALID_REASON = "Arbiter response was invalid JSON."
STEER_MAX_TOKENS = 500
OBJECTIVE_MAX_CHARS = 2_500

_ROUTE_SYNONYMS: dict[str, str] = {
    "interrupt_now": "interrupt_now",
    "inject_now": "interrupt_now",
    "interrupt": "interrupt_now",
    "steer": "interrupt_now",
    "do_not_interrupt": "do_not_interrupt",
    "queue": "do_not_interrupt",
    "ignore": "ignore",
    "drop": "ignore",
    "skip": "ignore",
    "respond": "respond",
    "reply": "respond",
    "pass": "pass",
}

_STEER_RULES = (
    "Mentions are intent signals, not hard routing locks.",
    'Distinguish directive mentions ("@you do X") from referential mentions ("@you did X").',
    "Referential mentions alone do not require immediate interruption.",
    'Use route="interrupt_now" when the latest message requires an immediate change of plan, a stop, a correction or a safety fix.',
    'Use route="do_not_interrupt" when the message is relevant but not urgent; normal queue flow will handle it.',
    'Use route="ignore" only when the message is confidently non-actionable noise.',
    'Prefer route="do_not_interrupt" over route="interrupt_now" when urgency is unclear.',
)


def normalize_route_label(value: object) -> str | None:
    """Map a model-supplied route label or synonym to its canonical form."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    return _ROUTE_SYNONYMS.get(key)


class _RouteReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    route: str | None = None
    decision: str | None = None
    reason: str | None = None
    readonly: bool = False
    resources: list[str] = []


@dataclass(frozen=True, slots=True)
class RoutingSpec:
    """
    One routing question.

    Attributes:
        target_name: Agent the classification is for.
        user_prompt: Situation description shown to the arbiter.
        rules: Additional classification rules.
        allowed_routes: Canonical routes the answer must come from.
        default_route: Route used when the answer is unusable.
        uncertainty_reason: Reason the arbiter should give when unsure.
        reason_max_chars: Reasons are clipped to this length.
        max_tokens: Completion cap for the call.
        preamble: Extra framing lines placed before the schema.
    """

    target_name: str
    user_prompt: str
    rules: tuple[str, ...]
    allowed_routes: tuple[str, ...]
    default_route: str
    uncertainty_reason: str
    reason_max_chars: int = 180
    max_tokens: int = STEER_MAX_TOKENS
    preamble: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RoutingOutcome:
    outcome: RoutingOutcomeKind
    route: str
    reason: str
    read_only: bool = False
    usage: Usage | None = None
    cost_usd: float | None = None
    model: str | None = None
    duration_ms: int = 0


class RoutingArbiter:
    """Runs one JSON-constrained classification call with a single retry."""

    def __init__(
        self,
        provider: ChatProvider,
        *,
        model: str,
        max_retries: int = 1,
        timeout_s: float | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.max_retries = max_retries
        self.timeout_s = timeout_s

    def build_system_prompt(self, spec: RoutingSpec) -> str:
        routes = " | ".join(f'"{r}"' for r in spec.allowed_routes)
        lines = [
            f"You are a runtime routing arbiter for {spec.target_name}.",
            "You are not writing a user-visible reply. You only classify routing for this target agent.",
            *spec.preamble,
            "",
            "Return EXACTLY one JSON object. No markdown. No prose. No code fences.",
            f'Schema: {{"route": {routes}, "readonly": boolean, "reason": string, "resources": string[]}}',
            "",
            "Rules:",
            f'- "reason" must be non-empty and specific (<= {spec.reason_max_chars} chars).',
            "- Classify for the target agent only. Do not roleplay as the target agent.",
            *(f"- {rule}" for rule in spec.rules),
            f'- If uncertain, choose route="{spec.default_route}" with reason="{spec.uncertainty_reason}".',
        ]
        return "\n".join(lines)

    async def classify(self, spec: RoutingSpec) -> RoutingOutcome:
        request = ChatRequest(
            model=self.model,
            messages=[
                Message(role="system", content=self.build_system_prompt(spec)),
                Message(role="user", content=spec.user_prompt),
            ],
            temperature=0,
            max_tokens=spec.max_tokens,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
        )
        started = time.monotonic()
        try:
            response = await self.provider.chat(request)
        except Exception as e:
            logger.warning("Routing arbiter call failed for %s: %s", spec.target_name, e)
            return RoutingOutcome(
                outcome="error",
                route=spec.default_route,
                reason=spec.uncertainty_reason,
                model=self.model,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        common = {
            "usage": response.usage,
            "cost_usd": response.cost_usd,
            "model": response.model or self.model,
            "duration_ms": duration_ms,
        }
        text = (response.text or "").strip()
        if not text:
            return RoutingOutcome(
                outcome="empty_response",
                route=spec.default_route,
                reason=spec.uncertainty_reason,
                **common,
            )

        parsed = parse_loose_json(text)
        reply: _RouteReply | None = None
        if parsed is not None:
            try:
                reply = _RouteReply.model_validate(parsed)
            except ValidationError:
                reply = None
        if reply is None:
            return RoutingOutcome(
                outcome="invalid_json",
                route=spec.default_route,
                reason=spec.uncertainty_reason,
                **common,
            )

        route = normalize_route_label(reply.route) or normalize_route_label(reply.decision)
        if route not in spec.allowed_routes:
            route = spec.default_route
        reason = clip((reply.reason or "").strip(), spec.reason_max_chars) or spec.uncertainty_reason
        return RoutingOutcome(
            outcome="ok",
            route=route,
            reason=reason,
            read_only=reply.readonly,
            **common,
        )


@dataclass(frozen=True, slots=True)
class ActiveWork:
    """Snapshot of another in-flight work item for the same agent."""

    status: str
    source: str
    session_key: str
    title: str


@dataclass(frozen=True, slots=True)
class SteerArbiterInput:
    agent_id: str
    agent_name: str
    queue_lane: str
    session_key: str
    objective: str
    pending_messages: list[SteeringMessage]
    active_work: list[ActiveWork] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SteerArbiterResult:
    decision: SteerDecision
    reason: str
    usage: Usage | None = None
    cost_usd: float | None = None


def build_steer_prompt(input: SteerArbiterInput) -> str:
    pending = "\n".join(
        f"{idx}. [{m.sender_name or 'User'}] {m.text}"
        for idx, m in enumerate(input.pending_messages, start=1)
    )
    if input.active_work:
        active = "\n".join(
            f"{idx}. {w.status} | {w.source} | {w.session_key} | {w.title}"
            for idx, w in enumerate(input.active_work, start=1)
        )
    else:
        active = "(none)"
    return "\n".join(
        [
            f"Agent: {input.agent_name} ({input.agent_id})",
            f"Queue lane: {input.queue_lane}",
            f"Session: {input.session_key}",
            "",
            "Current objective (running now):",
            clip(input.objective, OBJECTIVE_MAX_CHARS),
            "",
            "Pending incoming messages:",
            pending,
            "",
            "Other active work across channels:",
            active,
        ]
    )


class SteerArbiter:
    """
    Decides whether pending inbound messages should interrupt a running job.

    Every failure mode (transport error, empty reply, unparseable reply)
    resolves to `do_not_interrupt`.
    """

    def __init__(self, provider: ChatProvider, *, model: str, timeout_s: float | None = None) -> None:
        self._routing = RoutingArbiter(provider, model=model, timeout_s=timeout_s)

    async def decide(self, input: SteerArbiterInput) -> SteerArbiterResult:
        spec = RoutingSpec(
            target_name=input.agent_name,
            user_prompt=build_steer_prompt(input),
            rules=_STEER_RULES,
            allowed_routes=STEER_DECISIONS,
            default_route="do_not_interrupt",
            uncertainty_reason=DEFAULT_STEER_REASON,
        )
        try:
            outcome = await self._routing.classify(spec)
        except Exception as e:
            logger.warning("Steer arbiter failed for agent %s: %s", input.agent_id, e)
            return SteerArbiterResult(decision="do_not_interrupt", reason=STEER_FAILED_REASON)

        if outcome.outcome == "error":
            return SteerArbiterResult(decision="do_not_interrupt", reason=STEER_FAILED_REASON)
        if outcome.outcome in ("invalid_json", "empty_response"):
            return SteerArbiterResult(
                decision="do_not_interrupt",
                reason=STEER_INVALID_REASON,
                usage=outcome.usage,
                cost_usd=outcome.cost_usd,
            )
        decision: SteerDecision = (
            outcome.route if outcome.route in STEER_DECISIONS else "do_not_interrupt"  # type: ignore[assignment]
        )
        return SteerArbiterResult(
            decision=decision,
            reason=outcome.reason,
            usage=outcome.usage,
            cost_usd=outcome.cost_usd,
        )


async def decide_steering_action(
    provider: ChatProvider,
    input: SteerArbiterInput,
    *,
    model: str,
) -> SteerArbiterResult:
    """Convenience wrapper around `SteerArbiter.decide`."""
    return await SteerArbiter(provider, model=model).decide(input)
