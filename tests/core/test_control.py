from __future__ import annotations

import asyncio

import pytest
from fakes import run_async

from agentrun.agents.errors import AgentCancelledError
from agentrun.agents.types import CONTINUE, Cancel, Continue, Pause, Steer, SteeringMessage
from agentrun.core.control import InMemoryRunControl, RunControlGate


def test_gate_without_port_always_continues():
    gate = RunControlGate(None)
    assert gate.enabled is False
    assert isinstance(run_async(gate.poll()), Continue)


def test_in_memory_control_priority_is_cancel_then_pause_then_steer():
    control = InMemoryRunControl()
    control.steer("hello")
    assert isinstance(run_async(control.poll()), Steer)
    control.pause()
    assert control.is_paused is True
    assert isinstance(run_async(control.poll()), Pause)
    control.cancel("stop")
    directive = run_async(control.poll())
    assert isinstance(directive, Cancel)
    assert directive.reason == "stop"


def test_gate_raises_on_cancel_and_notifies_port():
    control = InMemoryRunControl()
    control.cancel()
    gate = RunControlGate(control, poll_interval_s=0.001)

    with pytest.raises(AgentCancelledError, match="cancelled by operator"):
        run_async(gate.poll())
    assert control.lifecycle == ["cancelled"]


def test_gate_blocks_while_paused_and_fires_edges_once():
    control = InMemoryRunControl()
    control.pause()
    edges: list[str] = []

    async def on_pause():
        edges.append("pause")

    async def on_resume():
        edges.append("resume")

    gate = RunControlGate(
        control,
        poll_interval_s=0.001,
        on_pause_edge=on_pause,
        on_resume_edge=on_resume,
    )

    async def scenario():
        waiter = asyncio.create_task(gate.poll())
        await asyncio.sleep(0.02)
        assert not waiter.done()
        control.resume()
        return await asyncio.wait_for(waiter, timeout=1)

    directive = run_async(scenario())
    assert directive is CONTINUE
    assert control.lifecycle == ["paused", "resumed"]
    assert edges == ["pause", "resume"]


def test_cancel_while_paused_wins():
    control = InMemoryRunControl()
    control.pause()
    gate = RunControlGate(control, poll_interval_s=0.001)

    async def scenario():
        waiter = asyncio.create_task(gate.poll())
        await asyncio.sleep(0.01)
        control.cancel("shutting down")
        await waiter

    with pytest.raises(AgentCancelledError, match="shutting down"):
        run_async(scenario())
    assert control.lifecycle == ["paused", "cancelled"]


def test_failing_edge_callbacks_do_not_break_the_gate():
    control = InMemoryRunControl()
    control.pause()

    async def broken():
        raise RuntimeError("store offline")

    gate = RunControlGate(control, poll_interval_s=0.001, on_pause_edge=broken)

    async def scenario():
        waiter = asyncio.create_task(gate.poll())
        await asyncio.sleep(0.01)
        control.resume()
        return await waiter

    assert run_async(scenario()) is CONTINUE


def test_drain_prefers_queue_and_falls_back_to_directive():
    control = InMemoryRunControl()
    control.steer("first", sender_name="Dana")
    control.steer("second", sender_name="Lee")
    gate = RunControlGate(control)

    directive = run_async(gate.poll())
    drained = run_async(gate.drain(directive))
    assert [(m.sender_name, m.text) for m in drained] == [("Dana", "first"), ("Lee", "second")]
    assert control.pending_steering == 0

    stale = Steer(messages=(SteeringMessage(text="late", sender_name="Kai"),))
    assert [m.text for m in run_async(gate.drain(stale))] == ["late"]
