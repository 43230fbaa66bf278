from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Persistence layer: job lifecycle, transcripts, receipts and cost limits.
"""

from .errors import JobNotFoundError, JobStateError, StoreError
from .factory import create_job_store_from_env
from .models import (
    TERMINAL_JOB_STATUSES,
    AssistantPayload,
    AttemptKind,
    ExternalApiCallRecord,
    InferenceReceipt,
    Job,
    JobStatus,
    LimitStatus,
    MessagePayload,
    StoredMessage,
    StoredToolCall,
    SystemPayload,
    ToolPayload,
    UserPayload,
    decode_payload,
    encode_payload,
    new_id,
    now_ms,
)
from .store import InMemoryJobStore, JobStore, SQLiteJobStore

__all__ = [
    "AssistantPayload",
    "AttemptKind",
    "ExternalApiCallRecord",
    "InMemoryJobStore",
    "InferenceReceipt",
    "Job",
    "JobNotFoundError",
    "JobStateError",
    "JobStatus",
    "JobStore",
    "LimitStatus",
    "MessagePayload",
    "SQLiteJobStore",
    "StoreError",
    "StoredMessage",
    "StoredToolCall",
    "SystemPayload",
    "TERMINAL_JOB_STATUSES",
    "ToolPayload",
    "UserPayload",
    "create_job_store_from_env",
    "decode_payload",
    "encode_payload",
    "new_id",
    "now_ms",
]
