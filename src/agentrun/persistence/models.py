from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the persisted data model: jobs, transcript messages,
usage receipts and cost records.

Message payloads are a closed tagged union of pydantic models keyed on
`kind`. Business logic works with the typed models; JSON only appears where
a backend serializes them (`encode_payload` / `decode_payload`).
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

JobStatus = Literal[
    "PENDING",
    "RUNNING",
    "PAUSED",
    "COMPLETED",
    "FAILED",
    "CANCELLED",
    "ABANDONED",
]
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset(
    {"COMPLETED", "FAILED", "CANCELLED", "ABANDONED"}
)

MessageRole = Literal["system", "user", "assistant", "tool"]

AttemptKind = Literal[
    "primary",
    "no_tools_fallback",
    "image_fallback",
    "image_no_tools_fallback",
    "triage",
    "post_process",
    "last_look",
]


class StoredToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = "{}"
    type: str = "function"


class SystemPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["system"] = "system"
    text: str


class UserPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    text: str = ""
    parts: Optional[list[dict[str, Any]]] = None
    sender_name: Optional[str] = None


class AssistantPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assistant"] = "assistant"
    text: Optional[str] = None
    tool_calls: list[StoredToolCall] = Field(default_factory=list)
    is_final_response: bool = False


class ToolPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool"] = "tool"
    tool_call_id: str
    content: str
    tool_name: Optional[str] = None


MessagePayload = Annotated[
    Union[SystemPayload, UserPayload, AssistantPayload, ToolPayload],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[Any] = TypeAdapter(MessagePayload)


def encode_payload(payload: MessagePayload) -> str:
    return _PAYLOAD_ADAPTER.dump_json(payload).decode("utf-8")


def decode_payload(raw: str | bytes) -> MessagePayload:
    return _PAYLOAD_ADAPTER.validate_json(raw)


@dataclass(frozen=True, slots=True)
class Job:
    """One execution attempt of an agent against a work item."""

    id: str
    agent_id: str
    status: JobStatus = "PENDING"
    work_item_id: Optional[str] = None
    created_at: int = field(default_factory=lambda: now_ms())
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    error_text: Optional[str] = None
    final_response: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass(frozen=True, slots=True)
class StoredMessage:
    id: int
    job_id: str
    payload: MessagePayload
    created_at: int

    @property
    def role(self) -> MessageRole:
        return self.payload.kind


@dataclass(frozen=True, slots=True)
class InferenceReceipt:
    """Usage/cost record for one model attempt, successful or not."""

    job_id: str
    agent_id: str
    model: str
    attempt_kind: AttemptKind
    attempt_index: int
    turn: Optional[int] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: Optional[float] = None
    tool_call_names: list[str] = field(default_factory=list)
    finish_reason: Optional[str] = None
    is_fallback: bool = False
    duration_ms: int = 0
    model_span_id: Optional[str] = None
    error: Optional[str] = None
    created_at: int = field(default_factory=lambda: now_ms())


@dataclass(frozen=True, slots=True)
class ExternalApiCallRecord:
    job_id: str
    agent_id: str
    tool_call_id: str
    provider: str
    operation: str
    cost_usd: float
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int = field(default_factory=lambda: now_ms())


@dataclass(frozen=True, slots=True)
class LimitStatus:
    exceeded: bool = False
    warned: bool = False
    details: str = ""


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str = "job") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"
