"""
Transcript helpers: tool result formatting, truncation, image stripping,
prompt compaction and stored-message conversion.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from ..llms.types import Message, ToolCall
from ..persistence.models import (
    AssistantPayload,
    MessagePayload,
    StoredToolCall,
    SystemPayload,
    ToolPayload,
    UserPayload,
)
from ..tools.types import ToolCallResult

COMPACTED_MESSAGE_CHARS = 2_000


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def truncate_with_notice(text: str, max_chars: int, label: str) -> str:
    """
    Clip `text` to `max_chars`, keeping its head and tail around a notice.

    Three quarters of the kept budget goes to the head. The notice reports how
    many characters were dropped.
    """
    if len(text) <= max_chars:
        return text
    reserved = min(240, int(max_chars * 0.35))
    keep = max(0, max_chars - reserved)
    head = int(keep * 0.75)
    tail = keep - head
    omitted = len(text) - keep
    notice = f"\n\n[{label} truncated: omitted {omitted} chars]"
    if tail <= 0:
        return text[:head] + notice
    return text[:head] + notice + "\n" + text[-tail:]


def build_tool_result_content(result: ToolCallResult) -> str:
    if result.success:
        return result.output or "Success"
    if result.output:
        return f"{result.output}\n\nError: {result.error}"
    return f"Error: {result.error}"


def has_image_inputs(messages: Iterable[Message]) -> bool:
    for message in messages:
        if isinstance(message.content, list) and any(
            part.get("type") == "image_url" for part in message.content
        ):
            return True
    return False


def strip_image_inputs(messages: list[Message]) -> list[Message]:
    """Replace list content with its joined text parts, dropping images."""
    out: list[Message] = []
    for message in messages:
        if isinstance(message.content, list):
            out.append(replace(message, content=message.text()))
        else:
            out.append(message)
    return out


def _message_chars(message: Message) -> int:
    size = len(message.text())
    for tc in message.tool_calls:
        size += len(tc.arguments) + len(tc.tool_name)
    return size


def prepare_messages_for_model(messages: list[Message], max_chars: int) -> list[Message]:
    """
    Compact the prompt when it exceeds `max_chars`.

    Tool outputs are clipped oldest-first, then older user/assistant text.
    System messages and everything from the last assistant message onward are
    left intact. Compaction stops as soon as the prompt fits.
    """
    total = sum(_message_chars(m) for m in messages)
    if total <= max_chars:
        return messages

    protected_from = len(messages)
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].role == "assistant":
            protected_from = idx
            break

    out = list(messages)
    for roles in (("tool",), ("user", "assistant")):
        for idx in range(protected_from):
            if total <= max_chars:
                return out
            message = out[idx]
            if message.role not in roles:
                continue
            text = message.text()
            if len(text) <= COMPACTED_MESSAGE_CHARS:
                continue
            clipped = truncate_with_notice(text, COMPACTED_MESSAGE_CHARS, "compacted message")
            total -= len(text) - len(clipped)
            out[idx] = replace(message, content=clipped)
    return out


def payload_to_prompt_message(payload: MessagePayload) -> Message | None:
    """
    Convert a stored payload into a provider-ready message.

    Returns None when the payload has nothing to send (an assistant turn with
    neither text nor tool calls).
    """
    if isinstance(payload, SystemPayload):
        return Message(role="system", content=payload.text)
    if isinstance(payload, UserPayload):
        if payload.parts:
            return Message(role="user", content=list(payload.parts))  # type: ignore[arg-type]
        return Message(role="user", content=payload.text)
    if isinstance(payload, AssistantPayload):
        text = payload.text if payload.text and payload.text.strip() else None
        if text is None and not payload.tool_calls:
            return None
        return Message(
            role="assistant",
            content=text,
            tool_calls=[
                ToolCall(id=tc.id, tool_name=tc.name, arguments=tc.arguments, type=tc.type)
                for tc in payload.tool_calls
            ],
        )
    if isinstance(payload, ToolPayload):
        return Message(role="tool", content=payload.content, tool_call_id=payload.tool_call_id)
    return None


def stored_tool_calls(tool_calls: Iterable[ToolCall]) -> list[StoredToolCall]:
    return [
        StoredToolCall(id=tc.id, name=tc.tool_name, arguments=tc.arguments, type=tc.type)
        for tc in tool_calls
    ]
