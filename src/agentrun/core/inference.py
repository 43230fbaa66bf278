"""
The turn state machine driving one run.

Each turn polls run control, applies turn and cost budgets, calls the model
and executes any requested tools. The loop ends on natural completion (the
model stops or requests no tools), on a `model.pre_call` hook block, or when
the turn budget is exhausted. After natural completion a bounded last-look
pass folds in steering messages that arrived during the final turn.
"""

from __future__ import annotations

import logging

from ..agents.errors import AgentBudgetExceededError, AgentConfigurationError
from ..agents.prompts import cost_warning, retry_seed_note, turn_limit_message, turn_warning
from ..agents.retry_seed import build_retry_seed_from_job
from ..agents.types import LoopOutcome, RunRequest, Steer
from ..llms.classifiers import ProviderErrorClassifier
from ..llms.provider import ChatProvider
from ..persistence.store.base import JobStore
from ..tools.types import SandboxSessionManager, ToolExecutor
from .control import RunControlGate
from .events import RunEventBus
from .hooks import HookContext, HookDispatcher, run_hook
from .model_call import ModelCallStage
from .sandbox import DirectoryScanner, SessionTracker
from .settings import RunnerSettings
from .state import RunState
from .telemetry import NullTelemetrySink, TelemetrySink, TelemetrySpan
from .tool_batch import ToolBatchStage
from .transcript import TranscriptWriter

logger = logging.getLogger(__name__)


class InferenceLoop:
    """
    Runs the inference loop for one job at a time.

    The loop object is reusable; all per-run state lives in `RunState`.
    """

    def __init__(
        self,
        provider: ChatProvider,
        store: JobStore,
        executor: ToolExecutor,
        *,
        settings: RunnerSettings | None = None,
        telemetry: TelemetrySink | None = None,
        events: RunEventBus | None = None,
        hooks: HookDispatcher | None = None,
        classifier: ProviderErrorClassifier | None = None,
        session_manager: SandboxSessionManager | None = None,
        scanner: DirectoryScanner | None = None,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.provider = provider
        self.store = store
        self.executor = executor
        self.telemetry = telemetry or NullTelemetrySink()
        self.events = events or RunEventBus(buffer_size=self.settings.event_buffer_size)
        self.hooks = hooks
        self.classifier = classifier
        self.session_manager = session_manager
        self.scanner = scanner

    def effective_max_turns(self, request: RunRequest) -> int:
        if request.max_turns is None:
            return self.settings.max_turns
        if request.max_turns <= 0:
            raise AgentConfigurationError(f"max_turns must be positive, got {request.max_turns}")
        return request.max_turns

    async def run(
        self,
        job_id: str,
        request: RunRequest,
        *,
        gate: RunControlGate | None = None,
        job_span: TelemetrySpan | None = None,
    ) -> LoopOutcome:
        """
        Execute the loop for `request` against an already started job.

        Args:
            job_id: Running job that receives the transcript.
            request: Run request.
            gate: Run-control poll point; omitted means no control source.
            job_span: Parent span for turn spans.

        Raises:
            AgentCancelledError: Cancelled at a poll point.
            AgentBudgetExceededError: The agent's cost limit was reached.
            ModelCallFailedError: A model call failed through every fallback.
        """
        gate = gate or RunControlGate(None)
        max_turns = self.effective_max_turns(request)
        work_item = request.work_item
        state = RunState(
            job_id=job_id,
            request=request,
            max_turns=max_turns,
            messages=[],
            run_start_index=0,
            tools=list(request.tools),
            tools_enabled=bool(request.tools),
            sessions=SessionTracker(
                self.session_manager,
                agent_id=request.profile.id,
                session_key=work_item.session_key or work_item.id,
                sprite_name=request.sprite_name,
                sandbox_name=request.sandbox_name,
                cwd=request.cwd,
                default_cwd=self.settings.default_cwd,
                create_retry_delay_s=self.settings.session_create_retry_delay_s,
            ),
            job_span=job_span,
        )
        transcript = TranscriptWriter(self.store, self.events, self.telemetry)
        model_stage = ModelCallStage(
            self.provider,
            self.store,
            settings=self.settings,
            telemetry=self.telemetry,
            events=self.events,
            hooks=self.hooks,
            classifier=self.classifier,
        )
        batch_stage = ToolBatchStage(
            self.executor,
            self.store,
            transcript,
            gate,
            settings=self.settings,
            telemetry=self.telemetry,
            events=self.events,
            hooks=self.hooks,
            scanner=self.scanner,
        )

        await self._seed_prompt(state, transcript)
        logger.info(
            "Starting inference loop for job %s: model=%s max_turns=%d tools=%d",
            job_id,
            request.profile.model,
            max_turns,
            len(state.tools),
        )

        stopped = False
        blocked = False
        turn_warned = False
        cost_warned = False
        while state.turn < max_turns:
            directive = await gate.poll()
            if isinstance(directive, Steer):
                if await transcript.steering(state, await gate.drain(directive), "mid_run"):
                    continue

            state.turn += 1
            turn_span = self.telemetry.start_span(
                "turn",
                kind="turn",
                parent=job_span,
                attributes={"turn": state.turn},
            )
            state.turn_span = turn_span
            try:
                remaining = max_turns - state.turn
                if not turn_warned and remaining <= self.settings.turn_warning_threshold:
                    turn_warned = True
                    logger.warning(
                        "Job %s approaching turn limit: %d/%d", job_id, state.turn, max_turns
                    )
                    await transcript.system(state, turn_warning(remaining))

                limits = await self.store.check_limits(state.agent_id)
                if limits.exceeded:
                    logger.warning("Cost limit exceeded on job %s: %s", job_id, limits.details)
                    raise AgentBudgetExceededError(f"Cost limit exceeded: {limits.details}")
                if limits.warned and not cost_warned:
                    cost_warned = True
                    logger.warning("Cost limit warning on job %s: %s", job_id, limits.details)
                    await transcript.system(state, cost_warning(limits.details))

                while state.pending_context:
                    context = state.pending_context.pop(0)
                    await transcript.system(
                        state,
                        context,
                        stored_text=f"[Directory context injected for {state.sessions.cwd}: {len(context)} chars]",
                    )

                response = await model_stage.call(state)
                if response is None:
                    blocked = True
                    self.telemetry.end_span(turn_span, status="ok", attributes={"blocked_by_hook": True})
                    break

                await transcript.assistant(state, response.text, response.tool_calls)
                if response.tool_calls:
                    await batch_stage.run(state, response.tool_calls)

                attrs = {
                    "finish_reason": response.finish_reason,
                    "has_tool_calls": bool(response.tool_calls),
                }
                self.telemetry.end_span(turn_span, status="ok", attributes=attrs)
                if response.finish_reason == "stop" or not response.tool_calls:
                    logger.info(
                        "Job %s stopping after turn %d (finish_reason=%s)",
                        job_id,
                        state.turn,
                        response.finish_reason,
                    )
                    stopped = True
                    break
            except Exception as e:
                self.telemetry.end_span(turn_span, status="error", error=str(e) or e.__class__.__name__)
                raise
        state.turn_span = None

        hit_limit = state.turn >= max_turns and not stopped and not blocked
        if hit_limit:
            logger.warning("Job %s hit its turn limit of %d", job_id, max_turns)
            previous = state.final_response
            message = turn_limit_message(max_turns)
            await transcript.assistant(state, message)
            state.final_response = f"{previous}\n\n{message}" if previous else message

        if stopped and gate.enabled:
            await self._last_look(state, gate, transcript, model_stage)

        logger.info(
            "Inference loop complete for job %s: turns=%d hit_limit=%s", job_id, state.turn, hit_limit
        )
        return LoopOutcome(
            final_response=state.final_response,
            hit_limit=hit_limit,
            turns=state.turn,
            stopped_by_completion=stopped,
            blocked_by_hook=blocked,
            run_messages=list(state.messages[state.run_start_index:]),
            assistant_message_count=state.assistant_message_count,
            tool_message_count=state.tool_message_count,
        )

    async def _seed_prompt(self, state: RunState, transcript: TranscriptWriter) -> None:
        """
        Build the opening prompt.

        Order: system prompt, context preamble, session history, this run's
        user message, then any retry seed messages.
        """
        request = state.request
        work_item = request.work_item
        system_prompt = request.profile.system_prompt
        user_text = work_item.text

        hook = await run_hook(
            self.hooks,
            "run.pre_prompt",
            HookContext(
                job_id=state.job_id,
                agent_id=state.agent_id,
                metadata={"work_item_id": work_item.id},
            ),
            {
                "system_prompt": system_prompt,
                "user_message": user_text,
                "agent_id": state.agent_id,
                "work_item_id": work_item.id,
            },
        )
        if hook is not None:
            if isinstance(hook.data.get("system_prompt"), str) and hook.data["system_prompt"]:
                system_prompt = hook.data["system_prompt"]
            if isinstance(hook.data.get("user_message"), str) and hook.data["user_message"]:
                user_text = hook.data["user_message"]

        seed = None
        if request.retry_from_job_id:
            seed = await build_retry_seed_from_job(self.store, request.retry_from_job_id, user_text)

        if system_prompt:
            await transcript.system(state, system_prompt)
        if request.context_preamble:
            await transcript.system(
                state,
                request.context_preamble,
                stored_text=f"[Context preamble injected: {len(request.context_preamble)} chars]",
            )
        state.messages.extend(request.history)
        state.run_start_index = len(state.messages)
        await transcript.user(
            state,
            user_text,
            parts=work_item.parts,
            sender_name=work_item.sender_name,
        )

        if seed is not None:
            state.messages.extend(seed.prompt_messages)
            await transcript.system(
                state,
                retry_seed_note(
                    request.retry_from_job_id or "",
                    len(seed.prompt_messages),
                    dropped_incomplete_trailing_turn=seed.dropped_incomplete_trailing_turn,
                    skipped_initial_duplicate_user=seed.skipped_initial_duplicate_user,
                ),
                in_prompt=False,
            )

    async def _last_look(
        self,
        state: RunState,
        gate: RunControlGate,
        transcript: TranscriptWriter,
        model_stage: ModelCallStage,
    ) -> None:
        for pass_index in range(1, self.settings.max_last_look_passes + 1):
            directive = await gate.poll()
            if not isinstance(directive, Steer):
                return
            if not await transcript.steering(state, await gate.drain(directive), "end_of_run"):
                return
            logger.info("Last look pass %d on job %s", pass_index, state.job_id)
            response = await model_stage.call_last_look(state, pass_index=pass_index)
            await transcript.assistant(state, response.text)
            if response.tool_calls:
                logger.warning(
                    "Last look pass on job %s requested tools; stopping last look", state.job_id
                )
                return
