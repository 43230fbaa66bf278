"""
Sequential execution of one assistant turn's tool calls.

Calls run strictly in emission order against the same remote session. Every
function-type call receives exactly one tool message: its real result, a
blocked result, or a skipped placeholder when steering or cancellation cut
the batch short.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from typing import Any

from ..agents.errors import AgentCancelledError
from ..agents.messages import build_tool_result_content, truncate_with_notice
from ..agents.prompts import (
    SESSION_LOST_ERROR,
    TOOL_BLOCKED_CONTENT,
    TOOL_CANCELLED_CONTENT,
    TOOL_SKIPPED_CONTENT,
    session_recovery_notice,
)
from ..agents.types import Steer
from ..llms.types import ToolCall
from ..persistence.models import ExternalApiCallRecord
from ..persistence.store.base import JobStore
from ..tools.types import ToolCallResult, ToolContext, ToolExecutor
from .control import RunControlGate
from .events import RunEventBus
from .hooks import HookContext, HookDispatcher, run_hook
from .sandbox import DirectoryScanner
from .settings import RunnerSettings
from .state import RunState
from .telemetry import TelemetrySink, TelemetrySpan
from .transcript import TranscriptWriter

logger = logging.getLogger(__name__)


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Decode call arguments; anything but a JSON object becomes `{}`."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


class ToolBatchStage:
    """
    Executes tool batches for the inference loop.

    Args:
        executor: Tool-execution collaborator.
        store: Receives external API cost records.
        transcript: Writes tool results and steering turns.
        gate: Polled before every call in the batch.
        settings: Result budget and session retry limits.
        telemetry: Span/metric sink.
        events: Run event bus.
        hooks: Optional `tool.pre_exec` / `tool.post_exec` dispatcher.
        scanner: Optional directory-context scanner run after cwd moves.
    """

    def __init__(
        self,
        executor: ToolExecutor,
        store: JobStore,
        transcript: TranscriptWriter,
        gate: RunControlGate,
        *,
        settings: RunnerSettings,
        telemetry: TelemetrySink,
        events: RunEventBus,
        hooks: HookDispatcher | None = None,
        scanner: DirectoryScanner | None = None,
    ) -> None:
        self._executor = executor
        self._store = store
        self._transcript = transcript
        self._gate = gate
        self._settings = settings
        self._telemetry = telemetry
        self._events = events
        self._hooks = hooks
        self._scanner = scanner

    async def run(self, state: RunState, tool_calls: list[ToolCall]) -> bool:
        """
        Execute `tool_calls` in order.

        Returns:
            True when a steer interrupted the batch and its messages were
            injected.

        Raises:
            AgentCancelledError: The run was cancelled at a poll point. The
                remaining calls are answered with placeholders first.
        """
        span = self._telemetry.start_span(
            "tool_batch",
            kind="tool_batch",
            parent=state.turn_span,
            attributes={"tool_call_count": len(tool_calls), "turn": state.turn},
        )
        cwd_before = state.sessions.cwd
        answered: set[str] = set()
        steer: Steer | None = None
        steered_at = len(tool_calls)
        recovery_notice = False

        try:
            for index, call in enumerate(tool_calls):
                directive = await self._gate.poll()
                if isinstance(directive, Steer):
                    steer, steered_at = directive, index
                    break
                if call.type != "function":
                    continue
                recovery_notice = await self._execute_one(state, call, span) or recovery_notice
                answered.add(call.id)
        except AgentCancelledError as e:
            await self._fill_placeholders(state, tool_calls, answered, TOOL_CANCELLED_CONTENT)
            self._telemetry.end_span(span, status="error", error=str(e))
            raise
        except Exception as e:
            self._telemetry.end_span(span, status="error", error=str(e))
            raise

        if steer is not None:
            logger.info("Run %s steered before tool call %d of %d", state.job_id, steered_at + 1, len(tool_calls))
            await self._fill_placeholders(state, tool_calls, answered, TOOL_SKIPPED_CONTENT)

        if recovery_notice and state.sessions.take_recovery_notice():
            await self._transcript.system(state, session_recovery_notice(state.sessions.cwd))

        if steer is not None:
            await self._transcript.steering(state, await self._gate.drain(steer), "mid_run")

        self._telemetry.end_span(
            span,
            status="ok",
            attributes={"steered": steer is not None, "executed": len(answered)},
        )

        if state.sessions.cwd != cwd_before or state.sessions.directory_stale:
            context = await state.sessions.rescan(self._scanner)
            if context:
                state.pending_context.append(context)
        return steer is not None

    async def _fill_placeholders(
        self,
        state: RunState,
        tool_calls: list[ToolCall],
        answered: set[str],
        content: str,
    ) -> None:
        for call in tool_calls:
            if call.type != "function" or call.id in answered:
                continue
            await self._transcript.tool(state, call.id, content, tool_name=call.tool_name)
            answered.add(call.id)

    async def _execute_one(
        self,
        state: RunState,
        call: ToolCall,
        batch_span: TelemetrySpan | None,
    ) -> bool:
        """Run one call and append its result; True when a recovery notice is due."""
        arguments = parse_tool_arguments(call.arguments)
        self._events.emit(
            state.job_id,
            "tool_use",
            tool_name=call.tool_name,
            tool_call_id=call.id,
            input=arguments,
        )
        hook_ctx = HookContext(
            job_id=state.job_id,
            agent_id=state.agent_id,
            turn=state.turn,
            metadata={"work_item_id": state.request.work_item.id},
        )
        hook = await run_hook(
            self._hooks,
            "tool.pre_exec",
            hook_ctx,
            {
                "tool_name": call.tool_name,
                "tool_input": arguments,
                "tool_call_id": call.id,
                "turn": state.turn,
            },
        )
        if hook is not None:
            if hook.blocked:
                logger.info("Tool %s blocked by hook on job %s", call.tool_name, state.job_id)
                await self._transcript.tool(
                    state, call.id, TOOL_BLOCKED_CONTENT, tool_name=call.tool_name
                )
                self._events.emit(
                    state.job_id,
                    "tool_result",
                    tool_name=call.tool_name,
                    tool_call_id=call.id,
                    success=False,
                    error="Blocked by hook",
                )
                return False
            if isinstance(hook.data.get("tool_input"), dict):
                arguments = hook.data["tool_input"]

        sessions = state.sessions
        recovering = sessions.recovery_notice_pending
        exec_span = self._telemetry.start_span(
            "tool_exec",
            kind="tool_exec",
            parent=batch_span,
            attributes={"tool_name": call.tool_name, "tool_call_id": call.id},
        )
        started = time.monotonic()
        result = await self._execute(state, call, arguments)

        meta = result.meta
        if meta.cwd:
            sessions.update_cwd(meta.cwd)
        if meta.sandbox_switch is not None:
            await sessions.switch(meta.sandbox_switch)
        if meta.session_error:
            result = await self._retry_session(state, call, arguments, result, exec_span)
        if result.meta.session_invalidated:
            logger.warning(
                "Session invalidated on job %s; a fresh session will be created on the next call",
                state.job_id,
            )
            sessions.invalidate()

        repeat_count = self._count_error(state, call.tool_name, result)
        attributes: dict[str, Any] = {
            "success": result.success,
            "sandbox": sessions.sandbox_name,
            "sprite": sessions.sprite_name,
        }
        if repeat_count:
            attributes["repeat_count"] = repeat_count
        if result.meta.edit_operation:
            attributes["edit_operation"] = result.meta.edit_operation
        if result.meta.hash_mismatch:
            attributes["hash_mismatch"] = True
        if meta.sandbox_switch is not None:
            attributes["sandbox_switch_to"] = meta.sandbox_switch.sandbox_name
        duration_ms = int((time.monotonic() - started) * 1000)
        if result.success:
            self._telemetry.end_span(exec_span, status="ok", attributes=attributes)
        else:
            self._telemetry.end_span(
                exec_span,
                status="error",
                error=result.error or "Tool execution failed",
                attributes=attributes,
            )
        self._events.emit(
            state.job_id,
            "tool_result",
            tool_name=call.tool_name,
            tool_call_id=call.id,
            success=result.success,
            error=result.error,
        )

        post = await run_hook(
            self._hooks,
            "tool.post_exec",
            hook_ctx,
            {
                "tool_name": call.tool_name,
                "tool_input": arguments,
                "result": {
                    "success": result.success,
                    "output": result.output or result.error,
                },
                "duration_ms": duration_ms,
                "turn": state.turn,
            },
        )
        if post is not None and isinstance(post.data.get("result"), dict):
            output = post.data["result"].get("output")
            if isinstance(output, str):
                result = replace(result, output=output)

        cost = result.meta.external_api_cost
        if cost is not None:
            try:
                await self._store.record_external_api_cost(
                    ExternalApiCallRecord(
                        job_id=state.job_id,
                        agent_id=state.agent_id,
                        tool_call_id=call.id,
                        provider=cost.provider,
                        operation=cost.operation,
                        cost_usd=cost.cost_usd,
                        metadata=dict(cost.metadata),
                    )
                )
            except Exception as e:
                logger.warning(
                    "Failed to record external API cost %s/%s: %s", cost.provider, cost.operation, e
                )

        raw_content = build_tool_result_content(result)
        content = truncate_with_notice(
            raw_content, self._settings.tool_result_max_chars, "tool output"
        )
        if len(content) < len(raw_content):
            logger.warning(
                "Truncated %s result from %d to %d chars", call.tool_name, len(raw_content), len(content)
            )
        await self._transcript.tool(state, call.id, content, tool_name=call.tool_name)
        return recovering and sessions.session is not None

    async def _execute(
        self,
        state: RunState,
        call: ToolCall,
        arguments: dict[str, Any],
    ) -> ToolCallResult:
        sessions = state.sessions
        session = await sessions.ensure_session()
        context = ToolContext(
            job_id=state.job_id,
            agent_id=state.agent_id,
            tool_call_id=call.id,
            sprite_name=sessions.sprite_name,
            sandbox_name=sessions.sandbox_name,
            cwd=sessions.cwd,
            session=session,
            metadata=dict(state.request.metadata),
        )
        try:
            return await self._executor.execute(call.tool_name, arguments, context)
        except Exception as e:
            logger.warning("Tool executor raised for %s: %s", call.tool_name, e)
            return ToolCallResult.failure(str(e) or e.__class__.__name__)

    async def _retry_session(
        self,
        state: RunState,
        call: ToolCall,
        arguments: dict[str, Any],
        result: ToolCallResult,
        exec_span: TelemetrySpan | None,
    ) -> ToolCallResult:
        """
        Recreate the session and re-run the call after a session-layer fault.

        After `max_session_retries` failed attempts the session is dropped and
        the result becomes `SESSION_LOST_ERROR`.
        """
        sessions = state.sessions
        max_retries = self._settings.max_session_retries
        for attempt in range(1, max_retries + 1):
            retry_span = self._telemetry.start_span(
                "session_retry",
                kind="session_retry",
                parent=exec_span,
                attributes={"retry_number": attempt},
            )
            logger.warning(
                "Session error on %s, retrying (%d/%d): %s",
                call.tool_name,
                attempt,
                max_retries,
                result.error,
            )
            if await sessions.recreate_session() is None:
                self._telemetry.end_span(retry_span, status="error", error="Failed to recreate session")
                break
            result = await self._execute(state, call, arguments)
            if result.meta.cwd:
                sessions.update_cwd(result.meta.cwd)
            if not result.meta.session_error:
                self._telemetry.end_span(retry_span, status="ok")
                return result
            self._telemetry.end_span(
                retry_span, status="error", error=result.error or "Session error persisted"
            )

        logger.warning("Session lost on job %s after retries; dropping session", state.job_id)
        await sessions.close_session()
        return ToolCallResult.failure(SESSION_LOST_ERROR)

    def _count_error(self, state: RunState, tool_name: str, result: ToolCallResult) -> int:
        if result.success:
            return 0
        error = (result.error or "").strip()
        if not error:
            return 0
        key = (tool_name, error)
        count = state.tool_error_counts.get(key, 0) + 1
        state.tool_error_counts[key] = count
        if count == self._settings.repeated_tool_error_log_threshold:
            logger.warning(
                "Repeated tool error on job %s: %s failed %d times with %r",
                state.job_id,
                tool_name,
                count,
                error,
            )
        return count
