from __future__ import annotations

"""
Factory utilities for constructing concrete chat providers.
"""

import os
from typing import TYPE_CHECKING

from .config import LLMConfig
from .errors import LLMConfigurationError

if TYPE_CHECKING:
    from .provider import ChatProvider


_BUILTIN_PROVIDERS = ("litellm", "openai")


def available_providers() -> list[str]:
    return list(_BUILTIN_PROVIDERS)


def create_provider(name: str, *, config: LLMConfig | None = None) -> "ChatProvider":
    """Create a chat provider for a built-in adapter key."""
    key = name.strip().lower()
    cfg = config or LLMConfig.from_env()

    # Resolve lazily so importing the package never requires either SDK.
    if key == "openai":
        from .adapters.openai import OpenAIChatProvider

        return OpenAIChatProvider(config=cfg)
    if key == "litellm":
        from .adapters.litellm import LiteLLMChatProvider

        return LiteLLMChatProvider(config=cfg)

    raise LLMConfigurationError(
        f"Unknown provider '{name}'. Available: {', '.join(available_providers())}"
    )


def create_provider_from_env(*, config: LLMConfig | None = None) -> "ChatProvider":
    """Create a chat provider using `AGENTRUN_LLM_PROVIDER` (defaults to `openai`)."""
    return create_provider(os.getenv("AGENTRUN_LLM_PROVIDER", "openai"), config=config)
