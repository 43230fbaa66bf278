from __future__ import annotations

"""Job store backends."""

from .base import JobStore
from .in_memory import InMemoryJobStore
from .sqlite import SQLiteJobStore

__all__ = ["InMemoryJobStore", "JobStore", "SQLiteJobStore"]
