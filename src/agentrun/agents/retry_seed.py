"""
Rebuild a resumable prompt prefix from a failed job's stored transcript.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..llms.types import Message
from ..persistence.models import (
    AssistantPayload,
    MessagePayload,
    SystemPayload,
    ToolPayload,
    UserPayload,
)
from ..persistence.store.base import JobStore
from .messages import normalize_whitespace, payload_to_prompt_message
from .prompts import FAILURE_PREFIXES

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetrySeed:
    """
    Prompt prefix recovered from a previous job.

    Attributes:
        source_job_id: Job the transcript came from.
        prompt_messages: Provider-ready messages to place after the new user message.
        retained: Stored payloads that survived trimming, in order.
        dropped_incomplete_trailing_turn: Messages after the last safe boundary were cut.
        skipped_initial_duplicate_user: The first retained user message repeated
            the new inbound text and was dropped.
    """

    source_job_id: str | None
    prompt_messages: list[Message] = field(default_factory=list)
    retained: list[MessagePayload] = field(default_factory=list)
    dropped_incomplete_trailing_turn: bool = False
    skipped_initial_duplicate_user: bool = False


def _is_failure_reply(payload: MessagePayload) -> bool:
    if not isinstance(payload, AssistantPayload) or not payload.text:
        return False
    return any(prefix in payload.text for prefix in FAILURE_PREFIXES)


def _last_safe_boundary(payloads: Sequence[MessagePayload]) -> int:
    """
    Return the length of the longest prefix with no unanswered tool calls.

    A position is safe right after a user message, an assistant message
    without tool calls, or the tool message that answers the last open call.
    """
    good = 0
    pending: set[str] | None = None
    for idx, payload in enumerate(payloads):
        if pending is not None and not isinstance(payload, ToolPayload):
            break
        if isinstance(payload, AssistantPayload):
            ids = {tc.id for tc in payload.tool_calls}
            if ids:
                pending = ids
            else:
                good = idx + 1
        elif isinstance(payload, ToolPayload):
            if pending is None or payload.tool_call_id not in pending:
                break
            pending.discard(payload.tool_call_id)
            if not pending:
                pending = None
                good = idx + 1
        elif isinstance(payload, UserPayload):
            good = idx + 1
    return good


def build_retry_seed(
    payloads: Sequence[MessagePayload],
    current_text: str,
    *,
    source_job_id: str | None = None,
) -> RetrySeed:
    """
    Trim and convert a stored transcript into a resumable prompt prefix.

    Args:
        payloads: The prior job's stored messages, in append order.
        current_text: Text of the new inbound user message.
        source_job_id: Id of the prior job, carried into the result.

    Returns:
        The seed; `prompt_messages` may be empty.
    """
    trimmed = [p for p in payloads if not isinstance(p, SystemPayload)]
    while trimmed and _is_failure_reply(trimmed[-1]):
        trimmed.pop()

    good = _last_safe_boundary(trimmed)
    usable = trimmed[:good]
    dropped = good < len(trimmed)

    skipped_duplicate = False
    current = normalize_whitespace(current_text)
    if usable and isinstance(usable[0], UserPayload) and current:
        if normalize_whitespace(usable[0].text) == current:
            usable = usable[1:]
            skipped_duplicate = True

    prompt_messages: list[Message] = []
    retained: list[MessagePayload] = []
    for payload in usable:
        message = payload_to_prompt_message(payload)
        if message is None:
            continue
        prompt_messages.append(message)
        retained.append(payload)

    return RetrySeed(
        source_job_id=source_job_id,
        prompt_messages=prompt_messages,
        retained=retained,
        dropped_incomplete_trailing_turn=dropped,
        skipped_initial_duplicate_user=skipped_duplicate,
    )


async def build_retry_seed_from_job(
    store: JobStore,
    job_id: str,
    current_text: str,
) -> RetrySeed | None:
    """
    Load a job transcript and build its retry seed.

    Returns None when nothing usable remains or the transcript cannot be
    loaded; the new run then starts fresh.
    """
    try:
        messages = await store.list_messages_by_job(job_id)
    except Exception as e:
        logger.warning("Failed to load transcript for retry seed from job %s: %s", job_id, e)
        return None

    seed = build_retry_seed(
        [m.payload for m in messages],
        current_text,
        source_job_id=job_id,
    )
    if not seed.prompt_messages:
        return None
    return seed
