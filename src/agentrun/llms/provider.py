from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Base class for chat-completion providers.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, TypeVar

from .classifiers import classify_error
from .config import LLMConfig
from .errors import LLMError, LLMRetryableError
from .types import ChatRequest, ChatResponse
from .utils import backoff_delay

logger = logging.getLogger(__name__)

ReturnT = TypeVar("ReturnT")


class ChatProvider(ABC):
    """
    Provider-agnostic chat-completion client.

    Subclasses implement `_chat_core`; `chat` adds timeout handling and
    retry-with-backoff for transient failures. Errors that escape `chat` are
    always `LLMError` instances chained to the provider's original exception,
    so capability classifiers still see the provider text.
    """

    def __init__(self, *, config: LLMConfig | None = None) -> None:
        self.config = config or LLMConfig.default()

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Stable identifier, e.g. `openai` or `litellm`."""
        raise NotImplementedError

    async def chat(self, req: ChatRequest) -> ChatResponse:
        """
        Run one chat-completion request.

        Args:
            req: Normalized request.

        Returns:
            The normalized provider response.

        Raises:
            LLMError: When the provider fails after exhausting retries.
        """
        timeout = req.timeout_s if req.timeout_s is not None else self.config.timeout_s

        async def _provider_call() -> ChatResponse:
            if timeout is None:
                return await self._chat_core(req)
            return await asyncio.wait_for(self._chat_core(req), timeout=timeout)

        return await self._call_with_retries(
            _provider_call,
            model=req.model,
            max_retries=req.max_retries,
        )

    @abstractmethod
    async def _chat_core(self, req: ChatRequest) -> ChatResponse:
        raise NotImplementedError

    async def _call_with_retries(
        self,
        fn: Callable[[], Awaitable[ReturnT]],
        *,
        model: str | None,
        max_retries: int | None = None,
    ) -> ReturnT:
        """Execute a callable with retry-on-transient-error semantics."""
        retries = self.config.max_retries if max_retries is None else max_retries
        last: Exception | None = None

        for attempt in range(retries + 1):
            try:
                return await fn()
            except Exception as e:
                classified = classify_error(e)
                last = classified
                if isinstance(classified, LLMRetryableError) and attempt < retries:
                    delay = backoff_delay(
                        attempt,
                        self.config.backoff_base_s,
                        self.config.backoff_jitter_s,
                    )
                    logger.info(
                        "Transient provider error on %s (attempt %d/%d), retrying in %.2fs: %s",
                        model,
                        attempt + 1,
                        retries + 1,
                        delay,
                        classified,
                    )
                    await asyncio.sleep(delay)
                    continue
                if classified is e:
                    raise
                raise classified from e

        raise LLMError(f"Provider call failed after {retries} retries") from last
