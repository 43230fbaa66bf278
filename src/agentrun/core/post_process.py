"""
Final-mode reply synthesis.

In `final` response mode the raw transcript is not shown to the requester;
one tools-free model call turns the run's messages into a single reply.
"""

from __future__ import annotations

import logging
import time

from ..agents.errors import PostProcessingError
from ..agents.prompts import POST_PROCESS_SYSTEM_PROMPT
from ..agents.types import AgentProfile
from ..llms.provider import ChatProvider
from ..llms.types import ChatRequest, Message
from ..persistence.store.base import JobStore
from .receipts import record_receipt
from .settings import RunnerSettings
from .telemetry import TelemetrySink, TelemetrySpan

logger = logging.getLogger(__name__)

TOOL_RESULT_TRANSCRIPT_CHARS = 2_000


def format_transcript(
    messages: list[Message],
    *,
    agent_name: str | None = None,
    requester_label: str | None = None,
) -> str:
    """Render run messages as speaker-labelled lines, skipping system messages."""
    agent = agent_name or "Agent"
    requester = requester_label or "Requester"
    lines: list[str] = []
    for message in messages:
        if message.role == "user":
            if isinstance(message.content, str):
                lines.append(f"[{requester}]: {message.content}")
            else:
                lines.append(f"[{requester}]: [multimodal content]")
        elif message.role == "assistant":
            text = message.text().strip()
            if text:
                lines.append(f"[{agent}]: {text}")
            for tc in message.tool_calls:
                lines.append(f"[Tool: {tc.tool_name}]")
        elif message.role == "tool":
            content = message.text()
            if len(content) > TOOL_RESULT_TRANSCRIPT_CHARS:
                omitted = len(content) - TOOL_RESULT_TRANSCRIPT_CHARS
                content = content[:TOOL_RESULT_TRANSCRIPT_CHARS] + f"\n[... truncated {omitted} chars]"
            lines.append(f"[Tool Result]: {content}")
    return "\n\n".join(lines)


def should_skip_post_processing(run_messages: list[Message], hit_limit: bool) -> bool:
    """A single plain reply with no tool use is already presentable."""
    assistant = sum(1 for m in run_messages if m.role == "assistant")
    has_tools = any(m.role == "tool" for m in run_messages)
    return assistant == 1 and not has_tools and not hit_limit


class PostProcessor:
    def __init__(
        self,
        provider: ChatProvider,
        store: JobStore,
        *,
        settings: RunnerSettings,
        telemetry: TelemetrySink,
    ) -> None:
        self._provider = provider
        self._store = store
        self._settings = settings
        self._telemetry = telemetry

    def build_system_prompt(self, profile: AgentProfile, *, hit_limit: bool) -> str:
        prompt = f"You are {profile.name}. {POST_PROCESS_SYSTEM_PROMPT}"
        if hit_limit:
            prompt += (
                " The agent ran out of turns before finishing; say what is still "
                "outstanding."
            )
        return prompt

    async def synthesize(
        self,
        *,
        job_id: str,
        profile: AgentProfile,
        run_messages: list[Message],
        hit_limit: bool,
        requester_label: str | None = None,
        parent: TelemetrySpan | None = None,
    ) -> str:
        """
        Produce the final reply for a run.

        Raises:
            PostProcessingError: The provider failed or returned no text.
        """
        transcript = format_transcript(
            run_messages, agent_name=profile.name, requester_label=requester_label
        )
        req = ChatRequest(
            model=profile.model,
            messages=[
                Message(role="system", content=self.build_system_prompt(profile, hit_limit=hit_limit)),
                Message(role="user", content=f"<transcript>\n{transcript}\n</transcript>"),
            ],
            temperature=self._settings.post_process_temperature,
            max_tokens=profile.max_tokens,
            metadata={"job_id": job_id, "attempt_kind": "post_process"},
        )
        span = self._telemetry.start_span(
            "post_process",
            kind="post_process",
            parent=parent,
            attributes={"model": profile.model, "message_count": len(run_messages)},
        )
        started = time.monotonic()
        try:
            response = await self._provider.chat(req)
        except Exception as e:
            await record_receipt(
                self._store,
                self._telemetry,
                job_id=job_id,
                agent_id=profile.id,
                model=profile.model,
                attempt_kind="post_process",
                error=e,
                duration_ms=int((time.monotonic() - started) * 1000),
                model_span_id=span.span_id if span else None,
            )
            self._telemetry.end_span(span, status="error", error=str(e))
            raise PostProcessingError(f"Post-processing failed: {e}") from e

        await record_receipt(
            self._store,
            self._telemetry,
            job_id=job_id,
            agent_id=profile.id,
            model=profile.model,
            attempt_kind="post_process",
            response=response,
            duration_ms=int((time.monotonic() - started) * 1000),
            model_span_id=span.span_id if span else None,
        )
        text = (response.text or "").strip()
        if not text:
            self._telemetry.end_span(span, status="error", error="empty response")
            raise PostProcessingError("Post-processing returned empty response")
        self._telemetry.end_span(span, status="ok", attributes={"chars": len(text)})
        logger.debug("Post-processed final reply for job %s (%d chars)", job_id, len(text))
        return text
