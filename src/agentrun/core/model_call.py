"""
One model call per turn, with the capability fallback chain.

Tiers, tried only on error and each recorded as its own receipt:

1. `primary`: current tools and the full prompt.
2. `no_tools_fallback`: the provider rejected tool use; tools are disabled
   for the rest of the run and the call is repeated without them.
3. `image_fallback`: the provider rejected image input; image parts are
   stripped and the call is repeated with tools unchanged.
4. `image_no_tools_fallback`: the text-only retry was also refused for tool
   use; tools are disabled and the call is repeated once more.

Any other failure, or a failing last tier, is fatal for the run.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from ..agents.errors import ModelCallFailedError
from ..agents.messages import prepare_messages_for_model, strip_image_inputs
from ..llms.classifiers import ProviderErrorClassifier
from ..llms.provider import ChatProvider
from ..llms.types import ChatRequest, ChatResponse, Message, ToolDefinition
from ..persistence.models import AttemptKind
from ..persistence.store.base import JobStore
from .events import RunEventBus
from .hooks import HookContext, HookDispatcher, run_hook
from .receipts import record_receipt
from .settings import RunnerSettings
from .state import RunState
from .telemetry import TelemetryEvent, TelemetrySink, TelemetrySpan, now_ms

logger = logging.getLogger(__name__)


class ModelCallStage:
    """
    Issues inference calls for the loop and records every attempt.

    Args:
        provider: Chat provider used for every attempt.
        store: Receives one receipt per attempt.
        settings: Runner limits (prompt compaction budget).
        telemetry: Span/metric sink.
        events: Run event bus.
        hooks: Optional `model.pre_call` / `model.post_call` dispatcher.
        classifier: Capability-rejection predicates.
    """

    def __init__(
        self,
        provider: ChatProvider,
        store: JobStore,
        *,
        settings: RunnerSettings,
        telemetry: TelemetrySink,
        events: RunEventBus,
        hooks: HookDispatcher | None = None,
        classifier: ProviderErrorClassifier | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._settings = settings
        self._telemetry = telemetry
        self._events = events
        self._hooks = hooks
        self._classifier = classifier or ProviderErrorClassifier()

    async def call(self, state: RunState) -> ChatResponse | None:
        """
        Run one inference turn against the provider.

        Returns:
            The provider response, or None when a `model.pre_call` hook
            blocked the call.

        Raises:
            ModelCallFailedError: Every applicable tier failed.
        """
        profile = state.request.profile
        model = profile.model
        temperature = profile.temperature
        max_tokens = profile.max_tokens

        hook_ctx = HookContext(
            job_id=state.job_id,
            agent_id=state.agent_id,
            turn=state.turn,
            metadata={"work_item_id": state.request.work_item.id},
        )
        hook = await run_hook(
            self._hooks,
            "model.pre_call",
            hook_ctx,
            {
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "turn": state.turn,
            },
        )
        if hook is not None:
            if hook.blocked:
                logger.info("Model call blocked by hook on job %s turn %d", state.job_id, state.turn)
                return None
            if isinstance(hook.data.get("model"), str) and hook.data["model"]:
                model = hook.data["model"]
            if isinstance(hook.data.get("temperature"), (int, float)):
                temperature = float(hook.data["temperature"])
            if isinstance(hook.data.get("max_tokens"), int):
                max_tokens = hook.data["max_tokens"]

        prompt = self._prepare(state.messages)
        tools = state.active_tools
        span = self._telemetry.start_span(
            "model_call",
            kind="model_call",
            parent=state.turn_span,
            attributes={"model": model, "turn": state.turn, "tool_count": len(tools or [])},
        )
        started = time.monotonic()
        call_args: dict[str, Any] = {
            "state": state,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "span": span,
        }

        kind: AttemptKind = "primary"
        fallback_reason: str | None = None
        try:
            try:
                response = await self._attempt(kind, 0, prompt, tools, **call_args)
            except Exception as primary_error:
                if tools and self._classifier.tool_use_rejected(primary_error):
                    self._disable_tools(state, primary_error)
                    fallback_reason = "tool_use_rejected"
                    kind = "no_tools_fallback"
                    response = await self._attempt(kind, 1, prompt, None, **call_args)
                elif self._classifier.image_input_rejected(primary_error):
                    logger.info(
                        "Provider rejected image input on job %s, retrying text-only", state.job_id
                    )
                    text_only = self._prepare(strip_image_inputs(state.messages))
                    fallback_reason = "image_input_rejected"
                    kind = "image_fallback"
                    try:
                        response = await self._attempt(kind, 1, text_only, tools, **call_args)
                    except Exception as image_error:
                        if not (tools and self._classifier.tool_use_rejected(image_error)):
                            raise
                        self._disable_tools(state, image_error)
                        fallback_reason = "image_and_tool_use_rejected"
                        kind = "image_no_tools_fallback"
                        response = await self._attempt(kind, 2, text_only, None, **call_args)
                else:
                    raise
        except Exception as e:
            self._telemetry.end_span(
                span,
                status="error",
                error=str(e),
                attributes={"attempt_kind": kind, "fallback_reason": fallback_reason},
            )
            logger.warning("Model call failed on job %s turn %d: %s", state.job_id, state.turn, e)
            raise ModelCallFailedError(str(e) or e.__class__.__name__) from e

        self._telemetry.end_span(
            span,
            status="ok",
            attributes={
                "attempt_kind": kind,
                "is_fallback": kind != "primary",
                "fallback_reason": fallback_reason,
                "finish_reason": response.finish_reason,
                "input_tokens": response.usage.input_tokens or 0,
                "output_tokens": response.usage.output_tokens or 0,
            },
        )
        await run_hook(
            self._hooks,
            "model.post_call",
            hook_ctx,
            {
                "model": response.model or model,
                "turn": state.turn,
                "attempt_kind": kind,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "usage": {
                    "input_tokens": response.usage.input_tokens or 0,
                    "output_tokens": response.usage.output_tokens or 0,
                },
            },
        )
        return response

    async def call_last_look(self, state: RunState, *, pass_index: int) -> ChatResponse:
        """Tools-disabled call folding in messages that arrived after completion."""
        profile = state.request.profile
        prompt = self._prepare(state.messages)
        try:
            return await self._attempt(
                "last_look",
                pass_index,
                prompt,
                None,
                state=state,
                model=profile.model,
                temperature=profile.temperature,
                max_tokens=profile.max_tokens,
                span=state.turn_span,
            )
        except Exception as e:
            raise ModelCallFailedError(str(e) or e.__class__.__name__) from e

    def _prepare(self, messages: list[Message]) -> list[Message]:
        prepared = prepare_messages_for_model(messages, self._settings.model_input_max_chars)
        if prepared is not messages:
            logger.warning(
                "Compacted prompt to fit model input limit of %d chars",
                self._settings.model_input_max_chars,
            )
        return prepared

    def _disable_tools(self, state: RunState, error: BaseException) -> None:
        state.tools_enabled = False
        self._telemetry.record_event(
            TelemetryEvent(
                name="agent.tools.disabled",
                timestamp_ms=now_ms(),
                attributes={"job_id": state.job_id, "error": str(error)[:200]},
            )
        )
        logger.info(
            "Provider rejected tool use on job %s; tools disabled for the rest of the run: %s",
            state.job_id,
            error,
        )

    async def _attempt(
        self,
        kind: AttemptKind,
        index: int,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        *,
        state: RunState,
        model: str,
        temperature: float | None,
        max_tokens: int | None,
        span: TelemetrySpan | None,
    ) -> ChatResponse:
        req = ChatRequest(
            model=model,
            messages=messages,
            tools=tools,
            temperature=temperature,
            max_tokens=max_tokens,
            metadata={"job_id": state.job_id, "attempt_kind": kind},
        )
        started = time.monotonic()
        try:
            response = await self._provider.chat(req)
        except Exception as e:
            await record_receipt(
                self._store,
                self._telemetry,
                job_id=state.job_id,
                agent_id=state.agent_id,
                model=model,
                attempt_kind=kind,
                attempt_index=index,
                turn=state.turn,
                error=e,
                duration_ms=int((time.monotonic() - started) * 1000),
                model_span_id=span.span_id if span else None,
            )
            raise
        await record_receipt(
            self._store,
            self._telemetry,
            job_id=state.job_id,
            agent_id=state.agent_id,
            model=model,
            attempt_kind=kind,
            attempt_index=index,
            turn=state.turn,
            response=response,
            duration_ms=int((time.monotonic() - started) * 1000),
            model_span_id=span.span_id if span else None,
        )
        self._events.emit(
            state.job_id,
            "model_call",
            model=response.model or model,
            attempt_kind=kind,
            turn=state.turn,
            finish_reason=response.finish_reason,
            input_tokens=response.usage.input_tokens or 0,
            output_tokens=response.usage.output_tokens or 0,
        )
        return response
