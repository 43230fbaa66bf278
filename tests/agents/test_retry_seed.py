from __future__ import annotations

from fakes import run_async

from agentrun.agents.prompts import failure_message
from agentrun.agents.retry_seed import build_retry_seed, build_retry_seed_from_job
from agentrun.persistence.models import (
    AssistantPayload,
    StoredToolCall,
    SystemPayload,
    ToolPayload,
    UserPayload,
)
from agentrun.persistence.store import InMemoryJobStore


def _call(call_id: str) -> StoredToolCall:
    return StoredToolCall(id=call_id, name="bash", arguments='{"cmd": "make"}')


def _transcript():
    return [
        SystemPayload(text="You build things."),
        UserPayload(text="Fix the  build", sender_name="Dana"),
        AssistantPayload(text="Looking", tool_calls=[_call("c1"), _call("c2")]),
        ToolPayload(tool_call_id="c1", content="ok"),
        ToolPayload(tool_call_id="c2", content="1 error"),
        AssistantPayload(text="One error left"),
        AssistantPayload(tool_calls=[_call("c3")]),
    ]


def test_seed_drops_incomplete_trailing_turn_and_duplicate_user():
    seed = build_retry_seed(_transcript(), "fix the build", source_job_id="job_old")

    assert seed.source_job_id == "job_old"
    assert seed.dropped_incomplete_trailing_turn is True
    assert seed.skipped_initial_duplicate_user is False
    assert [m.role for m in seed.prompt_messages] == ["user", "assistant", "tool", "tool", "assistant"]
    assert seed.prompt_messages[1].tool_calls[1].id == "c2"
    assert not any(isinstance(p, SystemPayload) for p in seed.retained)


def test_duplicate_user_match_is_whitespace_insensitive():
    seed = build_retry_seed(_transcript(), "Fix the build")
    assert seed.skipped_initial_duplicate_user is True
    assert seed.prompt_messages[0].role == "assistant"


def test_trailing_failure_replies_are_stripped():
    payloads = _transcript()[:6] + [
        AssistantPayload(text=failure_message("boom", cancelled=False)),
        AssistantPayload(text=failure_message("", cancelled=True)),
    ]
    seed = build_retry_seed(payloads, "something else")

    assert seed.dropped_incomplete_trailing_turn is False
    assert seed.prompt_messages[-1].content == "One error left"


def test_seeding_a_seed_is_stable():
    first = build_retry_seed(_transcript(), "Fix the build")
    second = build_retry_seed(first.retained, "Fix the build")

    assert second.prompt_messages == first.prompt_messages
    assert second.dropped_incomplete_trailing_turn is False


def test_unanswered_calls_followed_by_user_are_cut_at_the_gap():
    payloads = [
        UserPayload(text="a"),
        AssistantPayload(tool_calls=[_call("c1")]),
        UserPayload(text="b"),
        AssistantPayload(text="c"),
    ]
    seed = build_retry_seed(payloads, "new")

    assert [m.content for m in seed.prompt_messages] == ["a"]
    assert seed.dropped_incomplete_trailing_turn is True


def test_seed_from_job_returns_none_when_nothing_is_usable():
    async def scenario():
        store = InMemoryJobStore()
        await store.setup()
        job = await store.create_job("agent-1")
        await store.start_job(job.id)
        await store.append_message(job.id, SystemPayload(text="sys"))
        await store.append_message(job.id, AssistantPayload(tool_calls=[_call("c9")]))
        empty = await build_retry_seed_from_job(store, job.id, "hi")
        missing = await build_retry_seed_from_job(store, "job_missing", "hi")
        return empty, missing

    empty, missing = run_async(scenario())
    assert empty is None
    assert missing is None
