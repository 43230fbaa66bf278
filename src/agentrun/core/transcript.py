"""
Keeps the prompt message list and the persisted transcript in step.
"""

from __future__ import annotations

import logging

from ..agents.messages import stored_tool_calls
from ..agents.prompts import STEER_PRIORITY_NOTE, steer_system_note, steer_user_text
from ..agents.types import SteeringMessage, SteerPhase
from ..llms.types import Message, MessagePart, ToolCall
from ..persistence.models import AssistantPayload, SystemPayload, ToolPayload, UserPayload
from ..persistence.store.base import JobStore
from .events import RunEventBus
from .state import RunState
from .telemetry import NullTelemetrySink, TelemetryEvent, TelemetrySink, now_ms

logger = logging.getLogger(__name__)


class TranscriptWriter:
    """
    Appends messages to the run prompt and the job transcript together.

    The transcript is append-only; messages land in the order they are
    written here.
    """

    def __init__(
        self,
        store: JobStore,
        events: RunEventBus,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self._store = store
        self._events = events
        self._telemetry = telemetry or NullTelemetrySink()

    async def system(
        self,
        state: RunState,
        text: str,
        *,
        stored_text: str | None = None,
        in_prompt: bool = True,
    ) -> None:
        if in_prompt:
            state.messages.append(Message(role="system", content=text))
        await self._store.append_message(
            state.job_id, SystemPayload(text=stored_text if stored_text is not None else text)
        )

    async def user(
        self,
        state: RunState,
        text: str,
        *,
        parts: list[MessagePart] | None = None,
        sender_name: str | None = None,
    ) -> None:
        content = list(parts) if parts else text
        state.messages.append(Message(role="user", content=content))
        await self._store.append_message(
            state.job_id,
            UserPayload(
                text=text,
                parts=[dict(p) for p in parts] if parts else None,
                sender_name=sender_name,
            ),
        )

    async def assistant(
        self,
        state: RunState,
        text: str | None,
        tool_calls: list[ToolCall] | None = None,
    ) -> None:
        """
        Record an assistant turn.

        Whitespace-only text is treated as absent; other text is stored as
        given. A turn with neither text nor tool calls is not recorded.
        """
        if text is not None and not text.strip():
            text = None
        tool_calls = list(tool_calls or [])
        if text is None and not tool_calls:
            return
        state.messages.append(Message(role="assistant", content=text, tool_calls=tool_calls))
        await self._store.append_message(
            state.job_id,
            AssistantPayload(text=text, tool_calls=stored_tool_calls(tool_calls)),
        )
        state.assistant_message_count += 1
        if text is not None:
            state.final_response = text
            self._events.emit(state.job_id, "message", role="assistant", content=text)

    async def tool(
        self,
        state: RunState,
        tool_call_id: str,
        content: str,
        *,
        tool_name: str | None = None,
    ) -> None:
        state.messages.append(Message(role="tool", content=content, tool_call_id=tool_call_id))
        await self._store.append_message(
            state.job_id,
            ToolPayload(tool_call_id=tool_call_id, content=content, tool_name=tool_name),
        )
        state.tool_message_count += 1

    async def steering(
        self,
        state: RunState,
        messages: list[SteeringMessage],
        phase: SteerPhase,
    ) -> bool:
        """Inject drained steering messages as a priority note plus one user turn."""
        if not messages:
            return False
        await self.system(state, STEER_PRIORITY_NOTE, stored_text=steer_system_note(phase))
        await self.user(state, steer_user_text(messages))
        self._events.emit(state.job_id, "steer", phase=phase, count=len(messages))
        self._telemetry.record_event(
            TelemetryEvent(
                name="agent.steer.injected",
                timestamp_ms=now_ms(),
                attributes={"job_id": state.job_id, "phase": phase, "count": len(messages)},
            )
        )
        logger.info("Injected %d steering message(s) into job %s (%s)", len(messages), state.job_id, phase)
        return True
