from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines custom exceptions for error handling in the llm package.
"""


class LLMError(Exception):
    """Base exception for all agentrun LLM-related errors."""

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMTimeoutError(LLMError):
    pass


class LLMRetryableError(LLMError):
    """
    Transient failures: rate limits, timeouts, provider 5xx, dropped sockets.
    These errors may be retried with backoff.
    """

    pass


class LLMInvalidResponseError(LLMError):
    """
    The provider returned a response that we couldn't parse or normalize.
    """

    pass


class LLMConfigurationError(LLMError):
    pass


class LLMCapabilityError(LLMError):
    """
    Raised when the selected provider cannot serve a requested capability
    (tool calling, image input) for the chosen model.
    """

    pass
