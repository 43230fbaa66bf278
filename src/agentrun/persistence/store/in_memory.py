from __future__ import annotations

"""In-process job store implementation for local development and tests."""

import asyncio
from dataclasses import replace
from typing import Mapping, Optional

from ..models import (
    ExternalApiCallRecord,
    InferenceReceipt,
    Job,
    MessagePayload,
    StoredMessage,
    now_ms,
)
from .base import JobStore


class InMemoryJobStore(JobStore):
    """Fast, process-local job store; state is lost when the process exits."""

    def __init__(
        self,
        *,
        cost_limits_usd: Mapping[str, float] | None = None,
        default_cost_limit_usd: float | None = None,
        warn_fraction: float = 0.8,
    ) -> None:
        super().__init__(
            cost_limits_usd=cost_limits_usd,
            default_cost_limit_usd=default_cost_limit_usd,
            warn_fraction=warn_fraction,
        )
        self._lock = asyncio.Lock()
        self._jobs: dict[str, Job] = {}
        self._messages: list[StoredMessage] = []
        self._receipts: list[InferenceReceipt] = []
        self._external_costs: list[ExternalApiCallRecord] = []

    async def get_job(self, job_id: str) -> Optional[Job]:
        self._ensure_setup()
        async with self._lock:
            return self._jobs.get(job_id)

    async def _insert_job(self, job: Job) -> None:
        self._ensure_setup()
        async with self._lock:
            self._jobs[job.id] = job

    async def _replace_job(self, job: Job) -> None:
        self._ensure_setup()
        async with self._lock:
            self._jobs[job.id] = job

    async def _insert_message(self, job_id: str, payload: MessagePayload) -> StoredMessage:
        self._ensure_setup()
        async with self._lock:
            message = StoredMessage(
                id=len(self._messages) + 1,
                job_id=job_id,
                payload=payload,
                created_at=now_ms(),
            )
            self._messages.append(message)
            return message

    async def list_messages_by_job(self, job_id: str) -> list[StoredMessage]:
        self._ensure_setup()
        async with self._lock:
            return [m for m in self._messages if m.job_id == job_id]

    async def _replace_message_payload(self, message_id: int, payload: MessagePayload) -> None:
        self._ensure_setup()
        async with self._lock:
            idx = message_id - 1
            self._messages[idx] = replace(self._messages[idx], payload=payload)

    async def record_inference_receipt(self, receipt: InferenceReceipt) -> None:
        self._ensure_setup()
        async with self._lock:
            self._receipts.append(receipt)

    async def list_inference_receipts(self, job_id: str) -> list[InferenceReceipt]:
        self._ensure_setup()
        async with self._lock:
            return [r for r in self._receipts if r.job_id == job_id]

    async def record_external_api_cost(self, record: ExternalApiCallRecord) -> None:
        self._ensure_setup()
        async with self._lock:
            self._external_costs.append(record)

    async def list_external_api_costs(self, job_id: str) -> list[ExternalApiCallRecord]:
        self._ensure_setup()
        async with self._lock:
            return [r for r in self._external_costs if r.job_id == job_id]

    async def total_cost_for_agent(self, agent_id: str) -> float:
        self._ensure_setup()
        async with self._lock:
            total = sum(
                r.cost_usd or 0.0 for r in self._receipts if r.agent_id == agent_id
            )
            total += sum(
                r.cost_usd for r in self._external_costs if r.agent_id == agent_id
            )
            return total
