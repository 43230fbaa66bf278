from __future__ import annotations

import asyncio

import pytest
from fakes import run_async

from agentrun.core.events import RunEventBus
from agentrun.core.hooks import HookContext, HookRegistry, HookResult, run_hook


def test_event_history_is_bounded_per_job():
    bus = RunEventBus(buffer_size=3)
    for idx in range(5):
        bus.emit("job-a", "message", index=idx)
    bus.emit("job-b", "job_started")

    assert [e.data["index"] for e in bus.history("job-a")] == [2, 3, 4]
    assert len(bus.history("job-b")) == 1
    assert bus.active_jobs() == ["job-a", "job-b"]


def test_subscribers_get_backlog_then_live_events_until_clear():
    bus = RunEventBus()
    bus.emit("job-a", "job_started")

    async def scenario():
        received: list[str] = []

        async def consume():
            async for event in bus.subscribe("job-a"):
                received.append(event.type)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        bus.emit("job-a", "model_call", model="m")
        bus.emit("job-b", "model_call", model="other")
        bus.emit("job-a", "job_completed")
        bus.clear("job-a")
        await asyncio.wait_for(task, timeout=1)
        return received

    assert run_async(scenario()) == ["job_started", "model_call", "job_completed"]
    assert bus.history("job-a") == []
    assert bus.active_jobs() == ["job-b"]


def test_event_bus_rejects_empty_buffer():
    with pytest.raises(ValueError):
        RunEventBus(buffer_size=0)


def _ctx() -> HookContext:
    return HookContext(job_id="job-1", agent_id="agent-1", turn=2)


def test_hook_registry_rejects_unknown_points():
    hooks = HookRegistry()
    with pytest.raises(ValueError, match="Unknown hook point"):
        hooks.register("model.before", lambda ctx, data: None)


def test_hooks_chain_in_order_and_accept_async_handlers():
    hooks = HookRegistry()
    hooks.register("tool.pre_exec", lambda ctx, data: {**data, "tool_input": {"cmd": "ls"}})

    @hooks.on("tool.pre_exec")
    async def _tag(ctx, data):
        return HookResult(data={**data, "turn": ctx.turn})

    hooks.register("tool.pre_exec", lambda ctx, data: None)

    result = run_async(hooks.dispatch("tool.pre_exec", _ctx(), {"tool_name": "bash", "tool_input": {}}))
    assert result.blocked is False
    assert result.data == {"tool_name": "bash", "tool_input": {"cmd": "ls"}, "turn": 2}


def test_first_block_stops_the_chain():
    hooks = HookRegistry()
    seen: list[str] = []

    def _block(ctx, data):
        seen.append("block")
        return HookResult(data=data, blocked=True, reason="policy")

    def _after(ctx, data):
        seen.append("after")

    hooks.register("model.pre_call", _block)
    hooks.register("model.pre_call", _after)

    result = run_async(hooks.dispatch("model.pre_call", _ctx(), {"model": "m"}))
    assert result.blocked is True
    assert result.reason == "policy"
    assert seen == ["block"]


def test_run_hook_swallows_handler_failures():
    hooks = HookRegistry()

    def _explode(ctx, data):
        raise RuntimeError("plugin bug")

    hooks.register("model.post_call", _explode)

    assert run_async(run_hook(hooks, "model.post_call", _ctx(), {})) is None
    assert run_async(run_hook(None, "model.post_call", _ctx(), {})) is None
