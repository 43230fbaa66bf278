from __future__ import annotations

import asyncio
from dataclasses import replace
from types import SimpleNamespace

import pytest

from agentrun.llms.adapters.base import normalize_chat_completion
from agentrun.llms.adapters.litellm import LiteLLMChatProvider
from agentrun.llms.adapters.openai import OpenAIChatProvider
from agentrun.llms.config import LLMConfig
from agentrun.llms.errors import (
    LLMConfigurationError,
    LLMError,
    LLMInvalidResponseError,
    LLMRetryableError,
    LLMTimeoutError,
)
from agentrun.llms.factory import available_providers, create_provider, create_provider_from_env
from agentrun.llms.provider import ChatProvider
from agentrun.llms.types import ChatRequest, ChatResponse, Message, ToolCall


def run_async(coro):
    return asyncio.run(coro)


def _config(**overrides) -> LLMConfig:
    base = LLMConfig(
        default_model="m",
        timeout_s=None,
        max_retries=2,
        backoff_base_s=0.0,
        backoff_jitter_s=0.0,
    )
    return replace(base, **overrides)


def _completion(**message) -> dict:
    return {
        "model": "gpt-test",
        "choices": [{"message": {"role": "assistant", **message}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 11, "completion_tokens": 7, "total_tokens": 18, "cost": 0.002},
    }


class _FlakyProvider(ChatProvider):
    def __init__(self, errors: list[Exception], *, config: LLMConfig) -> None:
        super().__init__(config=config)
        self.errors = list(errors)
        self.calls = 0

    @property
    def provider_id(self) -> str:
        return "flaky"

    async def _chat_core(self, req: ChatRequest) -> ChatResponse:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return ChatResponse(text="recovered")


class _SlowProvider(_FlakyProvider):
    async def _chat_core(self, req: ChatRequest) -> ChatResponse:
        self.calls += 1
        await asyncio.sleep(1)
        return ChatResponse(text="late")


class _FakeCompletions:
    def __init__(self, raw) -> None:
        self.raw = raw
        self.payloads: list[dict] = []

    async def create(self, **payload):
        self.payloads.append(payload)
        return self.raw


def _fake_client(raw) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions(raw)))


def test_normalize_dict_completion_with_tool_calls():
    raw = _completion(
        content=None,
        tool_calls=[
            {"id": "call_a", "type": "function", "function": {"name": "bash", "arguments": '{"cmd": "ls"}'}},
            {"function": {"name": "read_file", "arguments": None}},
        ],
    )
    response = normalize_chat_completion(raw)

    assert response.text is None
    assert response.tool_calls == [
        ToolCall(id="call_a", tool_name="bash", arguments='{"cmd": "ls"}'),
        ToolCall(id="call_1", tool_name="read_file", arguments="{}"),
    ]
    assert response.usage.input_tokens == 11
    assert response.usage.output_tokens == 7
    assert response.usage.total_tokens == 18
    assert response.cost_usd == 0.002
    assert response.finish_reason == "stop"
    assert response.model == "gpt-test"
    assert response.raw is raw


def test_normalize_reads_total_cost_and_sdk_objects():
    raw = SimpleNamespace(
        model="x",
        choices=[SimpleNamespace(message=SimpleNamespace(content="hi", tool_calls=None), finish_reason="length")],
        usage=SimpleNamespace(prompt_tokens=1, completion_tokens=2, total_tokens=3, cost=None, total_cost=0.25),
    )
    response = normalize_chat_completion(raw)

    assert response.text == "hi"
    assert response.tool_calls == []
    assert response.finish_reason == "length"
    assert response.cost_usd == 0.25
    assert response.raw == {}


def test_normalize_without_choices_is_an_empty_response():
    response = normalize_chat_completion(
        {"choices": [], "model": "gpt-test", "usage": {"prompt_tokens": 4, "total_cost": 0.001}}
    )

    assert response.text is None
    assert response.tool_calls == []
    assert response.finish_reason is None
    assert response.usage.input_tokens == 4
    assert response.cost_usd == 0.001
    assert response.model == "gpt-test"


def test_normalize_rejects_missing_response():
    with pytest.raises(LLMInvalidResponseError):
        normalize_chat_completion(None)


def test_transient_errors_are_retried_until_success():
    provider = _FlakyProvider(
        [RuntimeError("503 service unavailable"), ConnectionResetError("reset")],
        config=_config(),
    )

    response = run_async(provider.chat(ChatRequest(model="m")))

    assert response.text == "recovered"
    assert provider.calls == 3


def test_retries_are_bounded_by_request_override():
    provider = _FlakyProvider(
        [RuntimeError("rate limit hit"), RuntimeError("rate limit hit")],
        config=_config(max_retries=5),
    )

    with pytest.raises(LLMRetryableError) as exc:
        run_async(provider.chat(ChatRequest(model="m", max_retries=1)))

    assert provider.calls == 2
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_non_transient_errors_fail_fast_and_keep_provider_text():
    original = RuntimeError("No endpoints found that support tool use")
    provider = _FlakyProvider([original], config=_config())

    with pytest.raises(LLMError) as exc:
        run_async(provider.chat(ChatRequest(model="m")))

    assert provider.calls == 1
    assert not isinstance(exc.value, LLMRetryableError)
    assert "support tool use" in str(exc.value)
    assert exc.value.__cause__ is original


def test_llm_errors_pass_through_unchanged():
    original = LLMError("bad key", status_code=401)
    provider = _FlakyProvider([original], config=_config())

    with pytest.raises(LLMError) as exc:
        run_async(provider.chat(ChatRequest(model="m")))

    assert exc.value is original
    assert provider.calls == 1


def test_request_timeout_maps_to_timeout_error():
    provider = _SlowProvider([], config=_config(max_retries=0))

    with pytest.raises(LLMTimeoutError):
        run_async(provider.chat(ChatRequest(model="m", timeout_s=0.01)))

    assert provider.calls == 1


def test_openai_provider_builds_payload_without_tools():
    client = _fake_client(_completion(content="hello"))
    provider = OpenAIChatProvider(config=_config(), client=client)
    req = ChatRequest(
        model="gpt-test",
        messages=[Message(role="system", content="sys"), Message(role="user", content="hi")],
        tool_choice="auto",
        temperature=0.3,
        max_tokens=200,
    )

    response = run_async(provider.chat(req))

    assert response.text == "hello"
    assert client.chat.completions.payloads == [
        {
            "model": "gpt-test",
            "messages": [
                {"role": "system", "content": "sys"},
                {"role": "user", "content": "hi"},
            ],
            "max_tokens": 200,
            "temperature": 0.3,
        }
    ]


def test_openai_provider_sends_tools_and_choice_together():
    client = _fake_client(_completion(content="ok"))
    provider = OpenAIChatProvider(config=_config(), client=client)
    tools = [{"type": "function", "function": {"name": "bash", "parameters": {"type": "object"}}}]
    assistant = Message(
        role="assistant",
        tool_calls=[ToolCall(id="c1", tool_name="bash", arguments="{}")],
    )
    tool = Message(role="tool", content="done", tool_call_id="c1")

    run_async(
        provider.chat(
            ChatRequest(
                model="gpt-test",
                messages=[assistant, tool],
                tools=tools,
                tool_choice="auto",
                response_format={"type": "json_object"},
            )
        )
    )

    payload = client.chat.completions.payloads[0]
    assert payload["tools"] == tools
    assert payload["tool_choice"] == "auto"
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["messages"][0]["content"] is None
    assert payload["messages"][0]["tool_calls"][0]["function"] == {"name": "bash", "arguments": "{}"}
    assert payload["messages"][1]["tool_call_id"] == "c1"


def test_litellm_falls_back_to_hidden_response_cost():
    provider = LiteLLMChatProvider(config=_config())
    raw = SimpleNamespace(
        model="x",
        choices=[SimpleNamespace(message=SimpleNamespace(content="hi", tool_calls=None), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=1, completion_tokens=1, total_tokens=2),
        _hidden_params={"response_cost": 0.5},
    )

    assert provider._normalize(raw).cost_usd == 0.5

    priced = _completion(content="hi")
    assert provider._normalize(priced).cost_usd == 0.002


def test_litellm_transport_defaults_do_not_override_payload():
    provider = LiteLLMChatProvider(
        config=_config(api_base_url="https://gateway.local/v1", api_key="sk-test")
    )

    out = provider._with_transport_defaults({"model": "m", "api_key": "sk-explicit"})

    assert out == {"model": "m", "api_base": "https://gateway.local/v1", "api_key": "sk-explicit"}


def test_factory_resolves_builtin_providers(monkeypatch):
    cfg = _config()
    assert available_providers() == ["litellm", "openai"]
    assert isinstance(create_provider(" OpenAI ", config=cfg), OpenAIChatProvider)
    assert isinstance(create_provider("litellm", config=cfg), LiteLLMChatProvider)

    monkeypatch.setenv("AGENTRUN_LLM_PROVIDER", "litellm")
    provider = create_provider_from_env(config=cfg)
    assert provider.provider_id == "litellm"
    assert provider.config is cfg


def test_factory_rejects_unknown_provider():
    with pytest.raises(LLMConfigurationError) as exc:
        create_provider("bedrock", config=_config())

    assert "litellm, openai" in str(exc.value)


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("AGENTRUN_LLM_MODEL", "anthropic/claude-x")
    monkeypatch.setenv("AGENTRUN_LLM_TIMEOUT_S", "none")
    monkeypatch.setenv("AGENTRUN_LLM_MAX_RETRIES", "4")
    monkeypatch.setenv("AGENTRUN_LLM_API_BASE_URL", "https://openrouter.ai/api/v1")

    cfg = LLMConfig.from_env()

    assert cfg.default_model == "anthropic/claude-x"
    assert cfg.timeout_s is None
    assert cfg.max_retries == 4
    assert cfg.api_base_url == "https://openrouter.ai/api/v1"


def test_config_from_env_rejects_bad_numbers(monkeypatch):
    monkeypatch.setenv("AGENTRUN_LLM_MAX_RETRIES", "many")

    with pytest.raises(LLMConfigurationError) as exc:
        LLMConfig.from_env()

    assert "AGENTRUN_LLM_MAX_RETRIES" in str(exc.value)
