from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Shared base for providers that speak the OpenAI chat-completions shape.
"""

from abc import abstractmethod
from typing import Any

from ..errors import LLMInvalidResponseError
from ..provider import ChatProvider
from ..types import ChatRequest, ChatResponse, ToolCall, Usage


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _as_int(value: Any) -> int | None:
    return value if isinstance(value, int) else None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _to_dict(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    dump = getattr(raw, "model_dump", None)
    if callable(dump):
        try:
            out = dump()
            if isinstance(out, dict):
                return out
        except Exception:
            return {}
    return {}


def normalize_chat_completion(raw: Any) -> ChatResponse:
    """
    Convert an OpenAI-shaped completion (SDK object or dict) into `ChatResponse`.

    A completion without choices normalizes to an empty response (no text, no
    tool calls, no finish reason) so the run loop ends the turn naturally.

    Raises:
        LLMInvalidResponseError: When the provider returned nothing at all.
    """
    if raw is None:
        raise LLMInvalidResponseError("Provider returned an empty response")

    usage_raw = _get(raw, "usage")
    usage = Usage(
        input_tokens=_as_int(_get(usage_raw, "prompt_tokens")),
        output_tokens=_as_int(_get(usage_raw, "completion_tokens")),
        total_tokens=_as_int(_get(usage_raw, "total_tokens")),
    )
    cost = _as_float(_get(usage_raw, "cost"))
    if cost is None:
        cost = _as_float(_get(usage_raw, "total_cost"))

    choices = _get(raw, "choices") or []
    if not choices:
        return ChatResponse(
            text=None,
            usage=usage,
            cost_usd=cost,
            model=_get(raw, "model"),
            raw=_to_dict(raw),
        )

    choice = choices[0]
    message = _get(choice, "message")
    content = _get(message, "content")
    text = content if isinstance(content, str) else None

    tool_calls: list[ToolCall] = []
    for idx, tc in enumerate(_get(message, "tool_calls") or []):
        fn = _get(tc, "function")
        arguments = _get(fn, "arguments")
        if not isinstance(arguments, str):
            arguments = "{}" if arguments is None else str(arguments)
        tool_calls.append(
            ToolCall(
                id=str(_get(tc, "id") or f"call_{idx}"),
                tool_name=str(_get(fn, "name") or ""),
                arguments=arguments,
                type=str(_get(tc, "type") or "function"),
            )
        )

    return ChatResponse(
        text=text,
        tool_calls=tool_calls,
        finish_reason=_get(choice, "finish_reason"),
        usage=usage,
        cost_usd=cost,
        model=_get(raw, "model"),
        raw=_to_dict(raw),
    )


class ChatCompletionsProvider(ChatProvider):
    """Builds chat-completions payloads; subclasses dispatch them."""

    async def _chat_core(self, req: ChatRequest) -> ChatResponse:
        raw = await self._completions_create(self._build_payload(req))
        return self._normalize(raw)

    @abstractmethod
    async def _completions_create(self, payload: dict[str, Any]) -> Any:
        raise NotImplementedError

    def _normalize(self, raw: Any) -> ChatResponse:
        return normalize_chat_completion(raw)

    def _build_payload(self, req: ChatRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": req.model,
            "messages": [m.to_dict() for m in req.messages],
        }
        if req.tools:
            payload["tools"] = list(req.tools)
            if req.tool_choice is not None:
                payload["tool_choice"] = req.tool_choice
        if req.max_tokens is not None:
            payload["max_tokens"] = req.max_tokens
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.response_format is not None:
            payload["response_format"] = req.response_format
        return payload
