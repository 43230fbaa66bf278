from __future__ import annotations

"""
Concrete chat-completion provider adapters.
"""

from .base import ChatCompletionsProvider, normalize_chat_completion
from .litellm import LiteLLMChatProvider
from .openai import OpenAIChatProvider

__all__ = [
    "ChatCompletionsProvider",
    "LiteLLMChatProvider",
    "OpenAIChatProvider",
    "normalize_chat_completion",
]
