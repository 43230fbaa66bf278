"""
Pre-run triage: decide whether the agent should take a work item at all.
"""

from __future__ import annotations

from typing import Protocol

from ..llms.provider import ChatProvider
from .arbiter import RoutingArbiter, RoutingSpec
from .types import RunRequest, TriageResult

TRIAGE_MAX_TOKENS = 4_000
TRIAGE_HISTORY_LINES = 12
TRIAGE_INVALID_REASON = "Passing: triage response was invalid JSON."
TRIAGE_EMPTY_REASON = "Passing: triage response was empty."
TRIAGE_ERROR_REASON = "Passing: triage failed before classification."

_TRIAGE_RULES = (
    "Mentions are intent signals, not hard routing locks.",
    'Distinguish directive mentions ("@you do X") from referential mentions ("@you did X").',
    "Referential mentions alone do not require a response.",
    'If directly addressed by the target agent name with a request, set route="respond".',
    'If clearly addressed only to a different agent for action, set route="pass".',
    'If the latest message directly continues the target agent\'s recent turn, set route="respond".',
    'If ambiguous or shared, prefer route="respond" only when the target agent can add unique value.',
)

_TRIAGE_PREAMBLE = (
    "Decision question: should the target agent respond to THIS incoming message now, or pass?",
    "Multiple agents may see the same message and produce duplicate answers.",
)


class TriageGate(Protocol):
    """Classifies a run request before any inference turn is spent on it."""

    async def classify(self, request: RunRequest) -> TriageResult:
        ...


def _recent_history(request: RunRequest) -> str | None:
    lines: list[str] = []
    for message in request.history:
        if message.role not in ("user", "assistant"):
            continue
        text = message.text().strip()
        if not text:
            continue
        speaker = "User" if message.role == "user" else "You"
        lines.append(f"{speaker}: {' '.join(text.split())}")
    if not lines:
        return None
    return "\n".join(lines[-TRIAGE_HISTORY_LINES:])


class ArbiterTriageGate:
    """
    Triage through one JSON-constrained routing call.

    Unusable classifier output passes on the work item; only a raised error
    from outside the classifier lets the orchestrator proceed anyway.
    """

    def __init__(self, provider: ChatProvider, *, model: str | None = None) -> None:
        self.provider = provider
        self.model = model

    def build_user_prompt(self, request: RunRequest) -> str:
        sections = [request.work_item.text]
        if request.work_item.session_key:
            sections.append(f"[session: {request.work_item.session_key}]")
        history = _recent_history(request)
        if history:
            sections.extend(["", "<recent_conversation>", history, "</recent_conversation>"])
        return "\n".join(sections)

    async def classify(self, request: RunRequest) -> TriageResult:
        profile = request.profile
        model = self.model or profile.arbiter_model or profile.model
        arbiter = RoutingArbiter(self.provider, model=model)
        outcome = await arbiter.classify(
            RoutingSpec(
                target_name=profile.name,
                user_prompt=self.build_user_prompt(request),
                rules=_TRIAGE_RULES,
                allowed_routes=("respond", "pass"),
                default_route="pass",
                uncertainty_reason="Unable to classify confidently",
                reason_max_chars=140,
                max_tokens=TRIAGE_MAX_TOKENS,
                preamble=_TRIAGE_PREAMBLE,
            )
        )
        reason = {
            "error": TRIAGE_ERROR_REASON,
            "invalid_json": TRIAGE_INVALID_REASON,
            "empty_response": TRIAGE_EMPTY_REASON,
        }.get(outcome.outcome, outcome.reason)
        return TriageResult(
            should_respond=outcome.outcome == "ok" and outcome.route == "respond",
            reason=reason,
            is_read_only=outcome.read_only,
            usage=outcome.usage,
            cost_usd=outcome.cost_usd,
            model=outcome.model or model,
            duration_ms=outcome.duration_ms,
        )
