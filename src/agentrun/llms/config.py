from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

"""

import os
from dataclasses import dataclass

from .errors import LLMConfigurationError


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as e:
        raise LLMConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as e:
        raise LLMConfigurationError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class LLMConfig:
    # Models
    default_model: str

    # Reliability
    timeout_s: float | None
    max_retries: int
    backoff_base_s: float
    backoff_jitter_s: float

    api_base_url: str | None = None
    api_key: str | None = None

    @staticmethod
    def default() -> "LLMConfig":
        return LLMConfig(
            default_model="gpt-4.1-mini",
            timeout_s=120.0,
            max_retries=2,
            backoff_base_s=1.0,
            backoff_jitter_s=0.5,
        )

    @staticmethod
    def from_env() -> "LLMConfig":
        timeout = os.getenv("AGENTRUN_LLM_TIMEOUT_S", "120")
        return LLMConfig(
            default_model=os.getenv("AGENTRUN_LLM_MODEL", "gpt-4.1-mini"),
            api_base_url=os.getenv("AGENTRUN_LLM_API_BASE_URL"),
            api_key=os.getenv("AGENTRUN_LLM_API_KEY"),
            timeout_s=None if timeout.strip().lower() in ("", "none", "0") else _env_float("AGENTRUN_LLM_TIMEOUT_S", timeout),
            max_retries=_env_int("AGENTRUN_LLM_MAX_RETRIES", "2"),
            backoff_base_s=_env_float("AGENTRUN_LLM_BACKOFF_BASE_S", "1.0"),
            backoff_jitter_s=_env_float("AGENTRUN_LLM_BACKOFF_JITTER_S", "0.5"),
        )
