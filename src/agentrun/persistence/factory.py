from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides factory functions for creating job store backends based on environment variables.
"""

import os

from .errors import StoreError
from .store.base import JobStore
from .store.in_memory import InMemoryJobStore
from .store.sqlite import SQLiteJobStore


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise StoreError(f"{name} must be a number, got {raw!r}") from e


def create_job_store_from_env() -> JobStore:
    """Create a job store based on `AGENTRUN_STORE_BACKEND` and related environment settings."""
    backend = os.getenv("AGENTRUN_STORE_BACKEND", "sqlite").strip().lower()
    limit = _env_optional_float("AGENTRUN_COST_LIMIT_USD")
    warn_fraction = _env_optional_float("AGENTRUN_COST_WARN_FRACTION")
    kwargs = {
        "default_cost_limit_usd": limit,
        "warn_fraction": 0.8 if warn_fraction is None else warn_fraction,
    }

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryJobStore(**kwargs)

    if backend in ("sqlite", "sqlite3"):
        path = os.getenv("AGENTRUN_SQLITE_PATH", "agentrun.sqlite3")
        return SQLiteJobStore(path=path, **kwargs)

    raise StoreError(f"Unknown AGENTRUN_STORE_BACKEND: {backend!r}")
