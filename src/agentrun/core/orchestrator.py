"""
Top-level entry point for one agent run.

`RunOrchestrator.run` owns the job lifecycle: it creates and starts the job,
consults the optional triage gate, drives the inference loop, synthesizes a
final reply in `final` response mode and then completes the job. Every fatal
path appends exactly one assistant failure message before the job is marked
failed or cancelled, and the original exception is re-raised.
"""

from __future__ import annotations

import logging

from ..agents.errors import AgentCancelledError
from ..agents.prompts import failure_message
from ..agents.triage import TriageGate
from ..agents.types import LoopOutcome, RunRequest, RunResult, TriageResult
from ..llms.classifiers import ProviderErrorClassifier
from ..llms.provider import ChatProvider
from ..persistence.models import AssistantPayload
from ..persistence.store.base import JobStore
from ..tools.types import SandboxSessionManager, ToolExecutor
from .control import RunControlGate, RunControlPort
from .events import RunEventBus
from .hooks import HookDispatcher
from .inference import InferenceLoop
from .post_process import PostProcessor, should_skip_post_processing
from .receipts import record_receipt
from .sandbox import DirectoryScanner
from .settings import RunnerSettings
from .telemetry import NullTelemetrySink, TelemetrySink, TelemetrySpan

logger = logging.getLogger(__name__)

CANCELLED_JOB_REASON = "Cancelled by operator"
TRIAGE_SKIPPED_REASON = "Triage skipped by dispatch policy"


class RunOrchestrator:
    """
    Runs agent jobs end to end.

    Args:
        provider: Chat provider for inference, triage and post-processing.
        store: Job persistence collaborator.
        executor: Tool-execution collaborator.
        settings: Runner limits and timings.
        telemetry: Span/metric sink; defaults to a no-op sink.
        events: Run event bus; one is created when omitted.
        hooks: Optional hook dispatcher.
        classifier: Capability-rejection predicates for the fallback chain.
        session_manager: Remote session manager for tool execution.
        scanner: Directory-context scanner.
        triage: Optional pre-run triage gate.
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
        triage: TriageGate | None = None,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.store = store
        self.telemetry = telemetry or NullTelemetrySink()
        self.events = events or RunEventBus(buffer_size=self.settings.event_buffer_size)
        self.triage = triage
        self.loop = InferenceLoop(
            provider,
            store,
            executor,
            settings=self.settings,
            telemetry=self.telemetry,
            events=self.events,
            hooks=hooks,
            classifier=classifier,
            session_manager=session_manager,
            scanner=scanner,
        )
        self.post_processor = PostProcessor(
            provider,
            store,
            settings=self.settings,
            telemetry=self.telemetry,
        )

    async def run(
        self,
        request: RunRequest,
        *,
        control: RunControlPort | None = None,
    ) -> RunResult:
        """
        Execute one job for `request`.

        Args:
            request: Run request.
            control: Optional run-control source for pause/cancel/steer.

        Returns:
            The terminal run result.

        Raises:
            AgentCancelledError: The operator cancelled the run.
            AgentBudgetExceededError: The agent's cost limit was reached.
            ModelCallFailedError: Inference failed through every fallback.
            PostProcessingError: Final-mode synthesis failed.
        """
        profile = request.profile
        work_item = request.work_item
        max_turns = self.loop.effective_max_turns(request)

        job = await self.store.create_job(profile.id, work_item_id=work_item.id)
        self.events.emit(job.id, "job_started", agent_id=profile.id, work_item_id=work_item.id)
        job_span = self.telemetry.start_span(
            "job",
            kind="job",
            trace_id=job.id,
            attributes={
                "agent_id": profile.id,
                "work_item_id": work_item.id,
                "model": profile.model,
                "max_turns": max_turns,
                "response_mode": request.response_mode,
            },
        )
        logger.info("Job %s started for agent %s (work item %s)", job.id, profile.id, work_item.id)

        try:
            await self.store.start_job(job.id)

            triage = await self._triage(job.id, request, job_span)
            if triage is not None and not triage.should_respond:
                logger.info("Agent %s passed on work item %s: %s", profile.id, work_item.id, triage.reason)
                await self.store.complete_job(job.id)
                self.events.emit(job.id, "job_completed", passed=True)
                self.telemetry.end_span(job_span, status="ok", attributes={"passed": True})
                return RunResult(job_id=job.id, status="passed", triage=triage)

            gate = RunControlGate(
                control,
                poll_interval_s=self.settings.pause_poll_interval_s,
                on_pause_edge=lambda: self._mark_paused(job.id),
                on_resume_edge=lambda: self._mark_resumed(job.id),
            )
            outcome = await self.loop.run(job.id, request, gate=gate, job_span=job_span)

            final_response = outcome.final_response
            if request.response_mode == "final" and final_response:
                final_response = await self._finalize(job.id, request, outcome, job_span)

            await self.store.complete_job(job.id, final_response=final_response)
            self.events.emit(job.id, "job_completed", hit_limit=outcome.hit_limit, turns=outcome.turns)
            self.telemetry.end_span(
                job_span,
                status="ok",
                attributes={"hit_limit": outcome.hit_limit, "turns": outcome.turns},
            )
            return RunResult(
                job_id=job.id,
                status="completed",
                final_response=final_response,
                hit_limit=outcome.hit_limit,
                turns=outcome.turns,
                triage=triage,
            )
        except Exception as e:
            await self._fail(job.id, e, job_span)
            raise
        finally:
            self.events.clear(job.id)

    async def _triage(
        self,
        job_id: str,
        request: RunRequest,
        job_span: TelemetrySpan | None,
    ) -> TriageResult | None:
        """Consult the triage gate; None means proceed without a verdict."""
        if self.triage is None:
            return None
        span = self.telemetry.start_span("triage", kind="triage", parent=job_span)
        if request.skip_triage:
            self.events.emit(job_id, "triage", should_respond=True, reason=TRIAGE_SKIPPED_REASON)
            self.telemetry.end_span(span, status="ok", attributes={"skipped": True})
            return None

        try:
            result = await self.triage.classify(request)
        except Exception as e:
            logger.warning("Triage failed for job %s, proceeding without it: %s", job_id, e)
            self.telemetry.end_span(span, status="error", error=str(e))
            return None

        if result.usage is not None or result.cost_usd is not None:
            await record_receipt(
                self.store,
                self.telemetry,
                job_id=job_id,
                agent_id=request.profile.id,
                model=result.model or request.profile.model,
                attempt_kind="triage",
                turn=0,
                usage=result.usage,
                cost_usd=result.cost_usd,
                duration_ms=result.duration_ms,
                model_span_id=span.span_id if span else None,
            )
        self.events.emit(
            job_id,
            "triage",
            should_respond=result.should_respond,
            reason=result.reason,
        )
        self.telemetry.end_span(
            span,
            status="ok",
            attributes={
                "should_respond": result.should_respond,
                "is_read_only": result.is_read_only,
                "reason": result.reason,
            },
        )
        return result

    async def _finalize(
        self,
        job_id: str,
        request: RunRequest,
        outcome: LoopOutcome,
        job_span: TelemetrySpan | None,
    ) -> str | None:
        if should_skip_post_processing(outcome.run_messages, outcome.hit_limit):
            logger.debug("Skipping post-processing for job %s: single clean reply", job_id)
            await self.store.mark_final_response(job_id)
            return outcome.final_response

        text = await self.post_processor.synthesize(
            job_id=job_id,
            profile=request.profile,
            run_messages=outcome.run_messages,
            hit_limit=outcome.hit_limit,
            requester_label=request.work_item.sender_name,
            parent=job_span,
        )
        await self.store.append_message(job_id, AssistantPayload(text=text, is_final_response=True))
        self.events.emit(job_id, "message", role="assistant", content=text, final=True)
        return text

    async def _fail(self, job_id: str, error: Exception, job_span: TelemetrySpan | None) -> None:
        cancelled = isinstance(error, AgentCancelledError)
        detail = str(error) or error.__class__.__name__
        try:
            await self.store.append_message(
                job_id, AssistantPayload(text=failure_message(detail, cancelled=cancelled))
            )
        except Exception as append_error:
            logger.warning("Failed to persist failure message for job %s: %s", job_id, append_error)

        try:
            if cancelled:
                await self.store.cancel_job(job_id, CANCELLED_JOB_REASON)
            else:
                await self.store.fail_job(job_id, detail)
        except Exception as state_error:
            logger.warning("Failed to mark job %s as terminal: %s", job_id, state_error)

        if cancelled:
            logger.info("Job %s cancelled by operator", job_id)
            self.events.emit(job_id, "job_cancelled")
        else:
            logger.error("Job %s failed: %s", job_id, detail)
            self.events.emit(job_id, "job_failed", error=detail)
        self.telemetry.end_span(job_span, status="error", error=detail)

    async def _mark_paused(self, job_id: str) -> None:
        await self.store.pause_job(job_id)
        self.events.emit(job_id, "paused")

    async def _mark_resumed(self, job_id: str) -> None:
        await self.store.resume_job(job_id)
        self.events.emit(job_id, "resumed")
