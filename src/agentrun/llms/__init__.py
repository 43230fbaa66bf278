from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Chat-completion provider contract, adapters and error classification.
"""

from .classifiers import (
    ProviderErrorClassifier,
    classify_error,
    is_image_input_rejected,
    is_tool_use_rejected,
    is_transient,
)
from .config import LLMConfig
from .errors import (
    LLMCapabilityError,
    LLMConfigurationError,
    LLMError,
    LLMInvalidResponseError,
    LLMRetryableError,
    LLMTimeoutError,
)
from .factory import available_providers, create_provider, create_provider_from_env
from .provider import ChatProvider
from .types import (
    ChatRequest,
    ChatResponse,
    ImageURLContentPart,
    JSONObject,
    JSONValue,
    Message,
    MessageContent,
    MessagePart,
    TextContentPart,
    ToolCall,
    ToolDefinition,
    Usage,
)
from .utils import backoff_delay, extract_json_object, parse_loose_json, safe_json_loads

__all__ = [
    "ChatProvider",
    "ChatRequest",
    "ChatResponse",
    "ImageURLContentPart",
    "JSONObject",
    "JSONValue",
    "LLMCapabilityError",
    "LLMConfig",
    "LLMConfigurationError",
    "LLMError",
    "LLMInvalidResponseError",
    "LLMRetryableError",
    "LLMTimeoutError",
    "Message",
    "MessageContent",
    "MessagePart",
    "ProviderErrorClassifier",
    "TextContentPart",
    "ToolCall",
    "ToolDefinition",
    "Usage",
    "available_providers",
    "backoff_delay",
    "classify_error",
    "create_provider",
    "create_provider_from_env",
    "extract_json_object",
    "is_image_input_rejected",
    "is_tool_use_rejected",
    "is_transient",
    "parse_loose_json",
    "safe_json_loads",
]
