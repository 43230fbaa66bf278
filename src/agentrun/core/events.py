"""
Per-job run event pub/sub.

`RunEventBus` is an injected service rather than process state: each job gets
a bounded ring buffer of recent events plus live subscriber queues, and the
owner calls `clear` once the job is finished.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal

from .telemetry import now_ms

RunEventType = Literal[
    "job_started",
    "triage",
    "model_call",
    "tool_use",
    "tool_result",
    "steer",
    "message",
    "paused",
    "resumed",
    "job_completed",
    "job_failed",
    "job_cancelled",
]

_STREAM_END = object()


@dataclass(frozen=True, slots=True)
class RunEvent:
    """
    Event emitted while a job runs.

    Attributes:
        job_id: Job the event belongs to.
        type: Event type.
        timestamp_ms: Emission time in epoch milliseconds.
        data: JSON-safe event payload.
    """

    job_id: str
    type: RunEventType
    timestamp_ms: int = field(default_factory=now_ms)
    data: dict[str, Any] = field(default_factory=dict)


class RunEventBus:
    def __init__(self, *, buffer_size: int = 500) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.buffer_size = buffer_size
        self._buffers: dict[str, deque[RunEvent]] = {}
        self._subscribers: dict[str, list[asyncio.Queue[object]]] = {}

    def publish(self, event: RunEvent) -> None:
        buffer = self._buffers.get(event.job_id)
        if buffer is None:
            buffer = deque(maxlen=self.buffer_size)
            self._buffers[event.job_id] = buffer
        buffer.append(event)
        for queue in self._subscribers.get(event.job_id, []):
            queue.put_nowait(event)

    def emit(self, job_id: str, type: RunEventType, **data: Any) -> RunEvent:
        event = RunEvent(job_id=job_id, type=type, data=data)
        self.publish(event)
        return event

    def history(self, job_id: str) -> list[RunEvent]:
        return list(self._buffers.get(job_id, ()))

    async def subscribe(self, job_id: str) -> AsyncIterator[RunEvent]:
        """
        Yield buffered events for `job_id`, then live ones until `clear`.
        """
        queue: asyncio.Queue[object] = asyncio.Queue()
        backlog = self.history(job_id)
        self._subscribers.setdefault(job_id, []).append(queue)
        try:
            for event in backlog:
                yield event
            while True:
                item = await queue.get()
                if item is _STREAM_END:
                    return
                yield item  # type: ignore[misc]
        finally:
            subscribers = self._subscribers.get(job_id)
            if subscribers is not None and queue in subscribers:
                subscribers.remove(queue)
                if not subscribers:
                    self._subscribers.pop(job_id, None)

    def clear(self, job_id: str) -> None:
        """Drop a job's buffer and end its open subscriptions."""
        self._buffers.pop(job_id, None)
        for queue in self._subscribers.pop(job_id, []):
            queue.put_nowait(_STREAM_END)

    def active_jobs(self) -> list[str]:
        return sorted(set(self._buffers) | set(self._subscribers))
