from __future__ import annotations

"""
LiteLLM-backed adapter using `litellm.acompletion`.
"""

from dataclasses import replace
from typing import Any

from ..errors import LLMConfigurationError
from ..types import ChatResponse
from .base import ChatCompletionsProvider, _as_float, normalize_chat_completion


class LiteLLMChatProvider(ChatCompletionsProvider):
    """Concrete adapter routing through LiteLLM's provider-neutral client."""

    @property
    def provider_id(self) -> str:
        return "litellm"

    async def _completions_create(self, payload: dict[str, Any]) -> Any:
        """Dispatch chat payload to `litellm.acompletion`."""
        try:
            from litellm import acompletion
        except Exception as e:  # pragma: no cover - environment dependent
            raise LLMConfigurationError(
                "litellm is not installed. Install the dependency to use LiteLLMChatProvider."
            ) from e

        return await acompletion(**self._with_transport_defaults(payload))

    def _normalize(self, raw: Any) -> ChatResponse:
        response = normalize_chat_completion(raw)
        if response.cost_usd is not None:
            return response
        hidden = getattr(raw, "_hidden_params", None) or {}
        cost = _as_float(hidden.get("response_cost")) if isinstance(hidden, dict) else None
        if cost is None:
            return response
        return replace(response, cost_usd=cost)

    def _with_transport_defaults(self, payload: dict[str, Any]) -> dict[str, Any]:
        out = dict(payload)
        if self.config.api_base_url and "api_base" not in out:
            out["api_base"] = self.config.api_base_url
        if self.config.api_key and "api_key" not in out:
            out["api_key"] = self.config.api_key
        return out
