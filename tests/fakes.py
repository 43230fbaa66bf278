from __future__ import annotations

import asyncio
from typing import Any

from agentrun.agents.types import AgentProfile, RunRequest, WorkItem
from agentrun.core.settings import RunnerSettings
from agentrun.llms.config import LLMConfig
from agentrun.llms.errors import LLMError
from agentrun.llms.provider import ChatProvider
from agentrun.llms.types import ChatRequest, ChatResponse, ToolCall, Usage
from agentrun.tools.types import ToolCallResult, ToolContext

TOOLS = [
    {
        "type": "function",
        "function": {"name": "bash", "parameters": {"type": "object", "properties": {}}},
    }
]


def run_async(coro):
    return asyncio.run(coro)


def quick_config() -> LLMConfig:
    return LLMConfig(
        default_model="fake-model",
        timeout_s=None,
        max_retries=0,
        backoff_base_s=0.0,
        backoff_jitter_s=0.0,
    )


def quick_settings(**overrides: Any) -> RunnerSettings:
    values: dict[str, Any] = {
        "pause_poll_interval_s": 0.001,
        "session_create_retry_delay_s": 0.0,
    }
    values.update(overrides)
    return RunnerSettings(**values)


def reply(text: str | None = "done", *, finish_reason: str = "stop") -> ChatResponse:
    return ChatResponse(
        text=text,
        finish_reason=finish_reason,
        usage=Usage(input_tokens=10, output_tokens=5, total_tokens=15),
        model="fake-model",
    )


def tool_reply(*calls: tuple[str, str], text: str | None = None) -> ChatResponse:
    return ChatResponse(
        text=text,
        tool_calls=[ToolCall(id=call_id, tool_name=name, arguments="{}") for call_id, name in calls],
        finish_reason="tool_calls",
        usage=Usage(input_tokens=20, output_tokens=8, total_tokens=28),
        model="fake-model",
    )


class ScriptedProvider(ChatProvider):
    """Replays scripted responses; exceptions in the script are raised."""

    def __init__(self, script: list[ChatResponse | Exception] | None = None) -> None:
        super().__init__(config=quick_config())
        self.script = list(script or [])
        self.requests: list[ChatRequest] = []

    @property
    def provider_id(self) -> str:
        return "scripted"

    async def _chat_core(self, req: ChatRequest) -> ChatResponse:
        self.requests.append(req)
        if not self.script:
            return reply("fallthrough")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def tool_use_rejected() -> LLMError:
    return LLMError("No endpoints found that support tool use", status_code=404)


def image_rejected() -> LLMError:
    return LLMError("This model does not support image input", status_code=400)


class RecordingExecutor:
    def __init__(self, results: dict[str, ToolCallResult] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[tuple[str, dict[str, Any], ToolContext]] = []
        self.before_call = None

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> ToolCallResult:
        self.calls.append((name, arguments, context))
        if self.before_call is not None:
            self.before_call(name, context)
        return self.results.get(context.tool_call_id or "", ToolCallResult(success=True, output=f"{name} ok"))


class FakeSession:
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeSessionManager:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.acquired: list[FakeSession] = []

    async def acquire(self, *, sprite_name: str, session_key: str, agent_id: str, cwd: str) -> FakeSession:
        if self.fail:
            raise RuntimeError("sprite unreachable")
        session = FakeSession(f"{sprite_name}:{len(self.acquired) + 1}")
        self.acquired.append(session)
        return session


def make_request(
    text: str = "fix the build",
    *,
    tools: list | None = None,
    **kwargs: Any,
) -> RunRequest:
    profile = kwargs.pop(
        "profile",
        AgentProfile(id="agent-1", name="Builder", model="fake-model", system_prompt="You build things."),
    )
    work_item = kwargs.pop(
        "work_item",
        WorkItem(id="wi-1", text=text, sender_name="Dana", session_key="sess-1"),
    )
    return RunRequest(profile=profile, work_item=work_item, tools=list(tools or []), **kwargs)
