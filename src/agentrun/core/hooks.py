"""
Named extension points around prompts, model calls and tool calls.

Hook failures are logged and ignored; only an explicit `blocked=True`
changes what the run does.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Protocol, Union

logger = logging.getLogger(__name__)

HookName = Literal[
    "run.pre_prompt",
    "model.pre_call",
    "model.post_call",
    "tool.pre_exec",
    "tool.post_exec",
]
HOOK_NAMES: tuple[HookName, ...] = (
    "run.pre_prompt",
    "model.pre_call",
    "model.post_call",
    "tool.pre_exec",
    "tool.post_exec",
)


@dataclass(frozen=True, slots=True)
class HookContext:
    job_id: str
    agent_id: str
    turn: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class HookResult:
    """
    Outcome of dispatching one hook point.

    Attributes:
        data: Possibly rewritten hook payload.
        blocked: The hook vetoed the action.
        reason: Optional block explanation.
    """

    data: dict[str, Any]
    blocked: bool = False
    reason: str | None = None


class HookDispatcher(Protocol):
    async def dispatch(
        self,
        name: HookName,
        context: HookContext,
        data: dict[str, Any],
    ) -> HookResult:
        ...


HookHandler = Callable[
    [HookContext, dict[str, Any]],
    Union[HookResult, dict[str, Any], None, Awaitable[Union[HookResult, dict[str, Any], None]]],
]


class HookRegistry:
    """
    In-process `HookDispatcher` running handlers in registration order.

    A handler may return a `HookResult`, a replacement data dict, or None to
    leave the data unchanged. The first blocking result stops the chain.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[HookHandler]] = {}

    def register(self, name: HookName, handler: HookHandler) -> None:
        if name not in HOOK_NAMES:
            raise ValueError(f"Unknown hook point: {name}")
        self._handlers.setdefault(name, []).append(handler)

    def on(self, name: HookName) -> Callable[[HookHandler], HookHandler]:
        def _decorate(handler: HookHandler) -> HookHandler:
            self.register(name, handler)
            return handler

        return _decorate

    async def dispatch(
        self,
        name: HookName,
        context: HookContext,
        data: dict[str, Any],
    ) -> HookResult:
        current = dict(data)
        for handler in self._handlers.get(name, []):
            out = handler(context, current)
            if inspect.isawaitable(out):
                out = await out
            if isinstance(out, HookResult):
                if out.blocked:
                    return out
                current = dict(out.data)
            elif isinstance(out, dict):
                current = dict(out)
        return HookResult(data=current)


async def run_hook(
    dispatcher: HookDispatcher | None,
    name: HookName,
    context: HookContext,
    data: dict[str, Any],
) -> HookResult | None:
    """Dispatch a hook point, returning None when absent or when it failed."""
    if dispatcher is None:
        return None
    try:
        return await dispatcher.dispatch(name, context, data)
    except Exception as e:
        logger.warning("Hook %s failed for job %s: %s", name, context.job_id, e)
        return None
