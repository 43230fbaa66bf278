"""
Cooperative run control: pause, resume, cancel and steer.

The caller supplies one `RunControlPort`; the loop only observes it at
`RunControlGate.poll()` points (top of each turn and before each tool call).
In-flight model and tool calls always run to completion first.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Protocol

from ..agents.errors import AgentCancelledError
from ..agents.types import (
    CONTINUE,
    PAUSE,
    Cancel,
    Continue,
    Directive,
    Pause,
    Steer,
    SteeringMessage,
)

logger = logging.getLogger(__name__)

EdgeCallback = Callable[[], Awaitable[None]]


class RunControlPort(Protocol):
    """Caller-supplied control source for one run."""

    async def poll(self) -> Directive:
        """Return the current directive."""
        ...

    async def drain_steering(self) -> list[SteeringMessage]:
        """Atomically take every queued steering message."""
        ...

    async def on_paused(self) -> None:
        ...

    async def on_resumed(self) -> None:
        ...

    async def on_cancelled(self) -> None:
        ...


class InMemoryRunControl:
    """
    Process-local `RunControlPort` driven by method calls.

    Cancel wins over pause, and pause wins over queued steering. Lifecycle
    callbacks are recorded in `lifecycle` in the order they fired.
    """

    def __init__(self) -> None:
        self._paused = False
        self._cancel_reason: str | None = None
        self._cancel_requested = False
        self._steering: deque[SteeringMessage] = deque()
        self.lifecycle: list[str] = []

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def cancel(self, reason: str | None = None) -> None:
        self._cancel_requested = True
        self._cancel_reason = reason

    def steer(self, text: str, *, sender_name: str = "User") -> None:
        self._steering.append(SteeringMessage(text=text, sender_name=sender_name))

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def pending_steering(self) -> int:
        return len(self._steering)

    async def poll(self) -> Directive:
        if self._cancel_requested:
            return Cancel(reason=self._cancel_reason)
        if self._paused:
            return PAUSE
        if self._steering:
            return Steer(messages=tuple(self._steering))
        return CONTINUE

    async def drain_steering(self) -> list[SteeringMessage]:
        drained = list(self._steering)
        self._steering.clear()
        return drained

    async def on_paused(self) -> None:
        self.lifecycle.append("paused")

    async def on_resumed(self) -> None:
        self.lifecycle.append("resumed")

    async def on_cancelled(self) -> None:
        self.lifecycle.append("cancelled")


class RunControlGate:
    """
    Poll point translating port directives into loop behavior.

    Args:
        port: Control source; `None` makes every poll a no-op.
        poll_interval_s: Sleep between re-polls while paused.
        on_pause_edge: Extra callback fired with the port's `on_paused`.
        on_resume_edge: Extra callback fired with the port's `on_resumed`.
    """

    def __init__(
        self,
        port: RunControlPort | None,
        *,
        poll_interval_s: float = 1.0,
        on_pause_edge: EdgeCallback | None = None,
        on_resume_edge: EdgeCallback | None = None,
    ) -> None:
        self._port = port
        self._poll_interval_s = poll_interval_s
        self._on_pause_edge = on_pause_edge
        self._on_resume_edge = on_resume_edge

    @property
    def enabled(self) -> bool:
        return self._port is not None

    async def poll(self) -> Continue | Steer:
        """
        Observe the control source once, blocking while paused.

        Returns:
            `Continue`, or the `Steer` directive when messages are waiting.

        Raises:
            AgentCancelledError: The operator cancelled the run.
        """
        port = self._port
        if port is None:
            return CONTINUE

        paused = False
        while True:
            directive = await port.poll()
            if isinstance(directive, Cancel):
                await self._fire("on_cancelled", port.on_cancelled)
                if directive.reason:
                    raise AgentCancelledError(directive.reason)
                raise AgentCancelledError()
            if isinstance(directive, Pause):
                if not paused:
                    paused = True
                    await self._fire("on_paused", port.on_paused)
                    await self._fire("on_paused", self._on_pause_edge)
                await asyncio.sleep(self._poll_interval_s)
                continue
            if paused:
                await self._fire("on_resumed", port.on_resumed)
                await self._fire("on_resumed", self._on_resume_edge)
            if isinstance(directive, Steer):
                return directive
            return CONTINUE

    async def drain(self, directive: Steer) -> list[SteeringMessage]:
        """
        Take queued steering messages for injection.

        Falls back to the messages carried on the directive when the queue
        was already drained elsewhere.
        """
        if self._port is None:
            return list(directive.messages)
        drained = await self._port.drain_steering()
        if drained:
            return list(drained)
        return list(directive.messages)

    async def _fire(self, name: str, callback: EdgeCallback | None) -> None:
        if callback is None:
            return
        try:
            await callback()
        except Exception as e:
            logger.warning("Run control callback %s failed: %s", name, e)
