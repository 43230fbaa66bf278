from __future__ import annotations

"""
OpenAI-backed adapter using the chat-completions endpoint.

Also serves OpenAI-compatible gateways (OpenRouter and friends) through
`LLMConfig.api_base_url`.
"""

from typing import Any

from ..config import LLMConfig
from ..errors import LLMConfigurationError
from .base import ChatCompletionsProvider


class OpenAIChatProvider(ChatCompletionsProvider):
    """Concrete adapter using `openai.AsyncOpenAI` chat completions."""

    def __init__(
        self,
        *,
        config: LLMConfig | None = None,
        client: Any | None = None,
    ) -> None:
        super().__init__(config=config)
        self._client = client

    @property
    def provider_id(self) -> str:
        return "openai"

    async def _completions_create(self, payload: dict[str, Any]) -> Any:
        client = self._client or self._build_client()
        return await client.chat.completions.create(**payload)

    def _build_client(self) -> Any:
        """Construct AsyncOpenAI client from shared config."""
        try:
            from openai import AsyncOpenAI
        except Exception as e:  # pragma: no cover - environment dependent
            raise LLMConfigurationError(
                "openai package is not installed. Install it with: pip install openai"
            ) from e

        kwargs: dict[str, Any] = {"max_retries": 0}
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base_url:
            kwargs["base_url"] = self.config.api_base_url

        self._client = AsyncOpenAI(**kwargs)
        return self._client
