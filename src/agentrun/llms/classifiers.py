from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Heuristic classification of provider errors.

Providers report capability rejections only as free text, so these predicates
match on message fragments. `ProviderErrorClassifier` bundles them so callers
can substitute provider-specific rules.
"""

import asyncio
import socket
from dataclasses import dataclass
from typing import Callable

from .errors import LLMError, LLMRetryableError, LLMTimeoutError

ErrorPredicate = Callable[[BaseException], bool]

_TOOL_USE_PHRASES = (
    "support tool use",
    "tools unavailable",
    "tool use is not supported",
    "function calling is not supported",
    "no endpoints found that support tool use",
)

_TRANSIENT_PHRASES = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "overloaded",
    "temporarily unavailable",
    "service unavailable",
    "timed out",
    "timeout",
    "econnreset",
    "econnrefused",
    "socket hang up",
    "connection reset",
    "connection aborted",
    "network error",
    "fetch failed",
)

_BAD_REQUEST_PHRASES = ("invalid", "malformed", "missing required")


def _message(e: BaseException) -> str:
    try:
        return (str(e) or "").lower()
    except Exception:
        return repr(e).lower()


def error_status(e: BaseException) -> int | None:
    """Best-effort HTTP status extraction from provider SDK exceptions."""
    for attr in ("status_code", "status", "code"):
        val = getattr(e, attr, None)
        if isinstance(val, int):
            return val
        if isinstance(val, str) and val.isdigit():
            return int(val)

    resp = getattr(e, "response", None)
    if resp is not None:
        sc = getattr(resp, "status_code", None) or getattr(resp, "status", None)
        if isinstance(sc, int):
            return sc
        if isinstance(sc, str) and sc.isdigit():
            return int(sc)
    return None


def is_tool_use_rejected(e: BaseException) -> bool:
    msg = _message(e)
    return any(phrase in msg for phrase in _TOOL_USE_PHRASES)


def is_image_input_rejected(e: BaseException) -> bool:
    msg = _message(e)
    return (
        ("image" in msg and "support" in msg)
        or "multimodal" in msg
        or "invalid content type" in msg
        or "content parts" in msg
    )


def is_transient(e: BaseException) -> bool:
    if isinstance(e, LLMRetryableError):
        return True
    status = error_status(e)
    if status is not None:
        if status == 429 or status == 408 or status >= 500:
            return True
        if status == 400:
            # Some gateways use 400 for upstream hiccups; real bad requests name the field.
            msg = _message(e)
            return not any(phrase in msg for phrase in _BAD_REQUEST_PHRASES)
        if 400 <= status < 500:
            return False

    if isinstance(e, (asyncio.TimeoutError, TimeoutError, socket.timeout, ConnectionError)):
        return True
    msg = _message(e)
    return any(phrase in msg for phrase in _TRANSIENT_PHRASES)


def classify_error(e: BaseException) -> LLMError:
    """Map arbitrary exceptions into retryable vs non-retryable LLM errors."""
    if isinstance(e, LLMError):
        return e
    status = error_status(e)
    text = str(e) or repr(e)
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return LLMTimeoutError(text or "provider call timed out", status_code=status)
    if is_transient(e):
        return LLMRetryableError(text, status_code=status)
    return LLMError(text, status_code=status)


@dataclass(frozen=True, slots=True)
class ProviderErrorClassifier:
    """
    Pluggable predicates used by the model-call fallback chain.

    Attributes:
        tool_use_rejected: True when the provider refused the request because
            the model cannot call tools.
        image_input_rejected: True when the provider refused image content.
    """

    tool_use_rejected: ErrorPredicate = is_tool_use_rejected
    image_input_rejected: ErrorPredicate = is_image_input_rejected
