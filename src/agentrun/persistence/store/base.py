from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the abstract job store contract shared by all backends.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Mapping, Optional

from ..errors import JobNotFoundError, JobStateError
from ..models import (
    AssistantPayload,
    ExternalApiCallRecord,
    InferenceReceipt,
    Job,
    JobStatus,
    LimitStatus,
    MessagePayload,
    StoredMessage,
    new_id,
    now_ms,
)

_ALLOWED_SOURCES: dict[str, frozenset[str]] = {
    "RUNNING": frozenset({"PENDING", "PAUSED"}),
    "PAUSED": frozenset({"RUNNING"}),
}


class JobStore(ABC):
    """
    Base contract for job persistence backends.

    Job lifecycle rules live here; backends only provide storage primitives.
    Transitions are one-way into a terminal state (`COMPLETED`, `FAILED`,
    `CANCELLED`, `ABANDONED`) and terminal jobs reject every further change.

    Cost limits:
    - `cost_limits_usd` maps agent ids to a USD ceiling; agents without an
      entry fall back to `default_cost_limit_usd` (None means unlimited).
    - `check_limits` reports `warned` once spend reaches `warn_fraction` of
      the ceiling and `exceeded` once it reaches the ceiling.
    """

    def __init__(
        self,
        *,
        cost_limits_usd: Mapping[str, float] | None = None,
        default_cost_limit_usd: float | None = None,
        warn_fraction: float = 0.8,
    ) -> None:
        self._is_setup = False
        self.cost_limits_usd = dict(cost_limits_usd or {})
        self.default_cost_limit_usd = default_cost_limit_usd
        self.warn_fraction = warn_fraction

    async def setup(self) -> None:
        """Initialize backend resources."""
        self._is_setup = True

    async def close(self) -> None:
        """Release backend resources."""
        self._is_setup = False

    async def __aenter__(self) -> "JobStore":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError(
                "JobStore is not initialized. Call setup() or use `async with`."
            )

    # Job lifecycle

    async def create_job(self, agent_id: str, *, work_item_id: str | None = None) -> Job:
        job = Job(id=new_id("job"), agent_id=agent_id, work_item_id=work_item_id)
        await self._insert_job(job)
        return job

    async def require_job(self, job_id: str) -> Job:
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    async def start_job(self, job_id: str) -> Job:
        job = await self._transition(job_id, "RUNNING")
        if job.started_at is None:
            job = replace(job, started_at=now_ms())
        await self._replace_job(job)
        return job

    async def pause_job(self, job_id: str) -> Job:
        job = await self._transition(job_id, "PAUSED")
        await self._replace_job(job)
        return job

    async def resume_job(self, job_id: str) -> Job:
        job = await self._transition(job_id, "RUNNING")
        await self._replace_job(job)
        return job

    async def complete_job(self, job_id: str, *, final_response: str | None = None) -> Job:
        job = await self._transition(job_id, "COMPLETED")
        job = replace(job, completed_at=now_ms(), final_response=final_response)
        await self._replace_job(job)
        return job

    async def fail_job(self, job_id: str, error: str) -> Job:
        job = await self._transition(job_id, "FAILED")
        job = replace(job, completed_at=now_ms(), error_text=error)
        await self._replace_job(job)
        return job

    async def cancel_job(self, job_id: str, reason: str) -> Job:
        job = await self._transition(job_id, "CANCELLED")
        job = replace(job, completed_at=now_ms(), error_text=reason)
        await self._replace_job(job)
        return job

    async def _transition(self, job_id: str, target: JobStatus) -> Job:
        job = await self.require_job(job_id)
        if job.is_terminal:
            raise JobStateError(
                f"Job {job_id} is {job.status}; cannot move to {target}"
            )
        allowed = _ALLOWED_SOURCES.get(target)
        if allowed is not None and job.status not in allowed:
            raise JobStateError(
                f"Job {job_id} is {job.status}; cannot move to {target}"
            )
        return replace(job, status=target)

    # Transcript

    async def append_message(self, job_id: str, payload: MessagePayload) -> StoredMessage:
        """Append one message to a job transcript; role follows `payload.kind`."""
        job = await self.require_job(job_id)
        if job.is_terminal:
            raise JobStateError(f"Job {job_id} is {job.status}; transcript is closed")
        return await self._insert_message(job_id, payload)

    async def mark_final_response(self, job_id: str) -> Optional[StoredMessage]:
        """Flag the job's last assistant message as its final response."""
        for message in reversed(await self.list_messages_by_job(job_id)):
            if isinstance(message.payload, AssistantPayload):
                updated = message.payload.model_copy(update={"is_final_response": True})
                await self._replace_message_payload(message.id, updated)
                return replace(message, payload=updated)
        return None

    # Limits

    async def check_limits(self, agent_id: str) -> LimitStatus:
        limit = self.cost_limits_usd.get(agent_id, self.default_cost_limit_usd)
        if limit is None:
            return LimitStatus()
        spent = await self.total_cost_for_agent(agent_id)
        details = f"Agent {agent_id} has spent ${spent:.4f} of its ${limit:.2f} cost limit"
        if spent >= limit:
            return LimitStatus(exceeded=True, warned=True, details=details)
        if spent >= limit * self.warn_fraction:
            return LimitStatus(exceeded=False, warned=True, details=details)
        return LimitStatus(details=details)

    # Storage primitives

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        """Return a job by id, or None."""

    @abstractmethod
    async def _insert_job(self, job: Job) -> None:
        """Persist a newly created job."""

    @abstractmethod
    async def _replace_job(self, job: Job) -> None:
        """Overwrite the stored row for `job.id`."""

    @abstractmethod
    async def _insert_message(self, job_id: str, payload: MessagePayload) -> StoredMessage:
        """Store one message and return it with its sequence id."""

    @abstractmethod
    async def list_messages_by_job(self, job_id: str) -> list[StoredMessage]:
        """Return a job transcript in append order."""

    @abstractmethod
    async def _replace_message_payload(self, message_id: int, payload: MessagePayload) -> None:
        """Overwrite a stored message payload in place."""

    @abstractmethod
    async def record_inference_receipt(self, receipt: InferenceReceipt) -> None:
        """Persist one model-attempt receipt."""

    @abstractmethod
    async def list_inference_receipts(self, job_id: str) -> list[InferenceReceipt]:
        """Return receipts for a job in record order."""

    @abstractmethod
    async def record_external_api_cost(self, record: ExternalApiCallRecord) -> None:
        """Persist a tool-reported third-party API cost."""

    @abstractmethod
    async def list_external_api_costs(self, job_id: str) -> list[ExternalApiCallRecord]:
        """Return external API cost records for a job in record order."""

    @abstractmethod
    async def total_cost_for_agent(self, agent_id: str) -> float:
        """Sum receipt and external API costs recorded for an agent."""
