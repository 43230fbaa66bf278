from __future__ import annotations

from agentrun.core.post_process import format_transcript, should_skip_post_processing
from agentrun.llms.types import Message, ToolCall


def test_format_transcript_labels_speakers_and_skips_system():
    messages = [
        Message(role="system", content="hidden"),
        Message(role="user", content="deploy please"),
        Message(
            role="assistant",
            content="Deploying now",
            tool_calls=[ToolCall(id="c1", tool_name="deploy")],
        ),
        Message(role="tool", content="deployed v2", tool_call_id="c1"),
        Message(role="user", content=[{"type": "image_url", "image_url": {"url": "u"}}]),
    ]

    text = format_transcript(messages, agent_name="Shipper", requester_label="Dana")
    assert text.split("\n\n") == [
        "[Dana]: deploy please",
        "[Shipper]: Deploying now",
        "[Tool: deploy]",
        "[Tool Result]: deployed v2",
        "[Dana]: [multimodal content]",
    ]


def test_format_transcript_truncates_long_tool_results():
    text = format_transcript([Message(role="tool", content="y" * 2_500, tool_call_id="c1")])
    assert text.endswith("\n[... truncated 500 chars]")
    assert text.startswith("[Tool Result]: " + "y" * 2_000)


def test_skip_only_for_a_single_plain_reply():
    plain = [Message(role="user", content="hi"), Message(role="assistant", content="hello")]
    assert should_skip_post_processing(plain, hit_limit=False) is True
    assert should_skip_post_processing(plain, hit_limit=True) is False

    with_tools = plain[:1] + [
        Message(role="assistant", content=None, tool_calls=[ToolCall(id="c1", tool_name="bash")]),
        Message(role="tool", content="ok", tool_call_id="c1"),
        Message(role="assistant", content="done"),
    ]
    assert should_skip_post_processing(with_tools, hit_limit=False) is False
