"""
Inference receipt recording shared by every model-calling stage.
"""

from __future__ import annotations

import logging

from ..llms.types import ChatResponse, Usage
from ..persistence.models import AttemptKind, InferenceReceipt
from ..persistence.store.base import JobStore
from .telemetry import TelemetrySink

logger = logging.getLogger(__name__)

FALLBACK_ATTEMPT_KINDS: frozenset[str] = frozenset(
    {"no_tools_fallback", "image_fallback", "image_no_tools_fallback"}
)


async def record_receipt(
    store: JobStore,
    telemetry: TelemetrySink,
    *,
    job_id: str,
    agent_id: str,
    model: str,
    attempt_kind: AttemptKind,
    attempt_index: int = 0,
    turn: int | None = None,
    response: ChatResponse | None = None,
    usage: Usage | None = None,
    cost_usd: float | None = None,
    error: BaseException | str | None = None,
    duration_ms: int = 0,
    model_span_id: str | None = None,
) -> InferenceReceipt:
    """
    Persist one model attempt, successful or not.

    Storage failures are logged; a missing receipt never fails the run.
    """
    if response is not None:
        usage = response.usage
        cost_usd = response.cost_usd
        model = response.model or model
    usage = usage or Usage()
    receipt = InferenceReceipt(
        job_id=job_id,
        agent_id=agent_id,
        model=model,
        attempt_kind=attempt_kind,
        attempt_index=attempt_index,
        turn=turn,
        input_tokens=usage.input_tokens or 0,
        output_tokens=usage.output_tokens or 0,
        cost_usd=cost_usd,
        tool_call_names=[tc.tool_name for tc in response.tool_calls] if response else [],
        finish_reason=response.finish_reason if response else None,
        is_fallback=attempt_kind in FALLBACK_ATTEMPT_KINDS,
        duration_ms=duration_ms,
        model_span_id=model_span_id,
        error=str(error) if error is not None else None,
    )
    try:
        await store.record_inference_receipt(receipt)
    except Exception as e:
        logger.warning("Failed to record %s receipt for job %s: %s", attempt_kind, job_id, e)

    attrs = {"attempt_kind": attempt_kind, "success": error is None}
    telemetry.increment_counter("agentrun.model_calls", attributes=attrs)
    telemetry.record_histogram("agentrun.model_call.duration_ms", float(duration_ms), attributes=attrs)
    if usage.total_tokens:
        telemetry.record_histogram(
            "agentrun.model_call.total_tokens", float(usage.total_tokens), attributes=attrs
        )
    return receipt
