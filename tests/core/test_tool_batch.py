from __future__ import annotations

import logging

from fakes import (
    TOOLS,
    FakeSessionManager,
    RecordingExecutor,
    ScriptedProvider,
    make_request,
    quick_settings,
    reply,
    run_async,
    tool_reply,
)

from agentrun.agents.prompts import (
    SESSION_LOST_ERROR,
    STEER_PRIORITY_NOTE,
    TOOL_BLOCKED_CONTENT,
    TOOL_SKIPPED_CONTENT,
    session_recovery_notice,
    steer_system_note,
)
from agentrun.core.control import InMemoryRunControl, RunControlGate
from agentrun.core.hooks import HookRegistry, HookResult
from agentrun.core.inference import InferenceLoop
from agentrun.core.telemetry import InMemoryTelemetrySink
from agentrun.core.tool_batch import parse_tool_arguments
from agentrun.llms.types import ChatResponse, ToolCall
from agentrun.persistence.models import SystemPayload, ToolPayload, UserPayload
from agentrun.persistence.store import InMemoryJobStore
from agentrun.tools.types import ExternalApiCost, SandboxSwitch, ToolCallResult, ToolResultMeta


class _SequenceExecutor:
    def __init__(self, results: list[ToolCallResult]) -> None:
        self.results = list(results)
        self.calls: list[str] = []
        self.sessions: list[object] = []

    async def execute(self, name, arguments, context):
        self.calls.append(name)
        self.sessions.append(context.session)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class _Scanner:
    def __init__(self) -> None:
        self.scanned: list[str] = []
        self.sprites: list[str | None] = []

    async def scan(self, *, sprite_name, cwd):
        self.scanned.append(cwd)
        self.sprites.append(sprite_name)
        return f"Contents of {cwd}: src/ tests/"


async def _run(
    provider,
    request,
    executor,
    *,
    control=None,
    session_manager=None,
    scanner=None,
    hooks=None,
    telemetry=None,
    store=None,
    settings=None,
):
    if store is None:
        store = InMemoryJobStore()
        await store.setup()
    loop = InferenceLoop(
        provider,
        store,
        executor,
        settings=settings or quick_settings(),
        telemetry=telemetry,
        hooks=hooks,
        session_manager=session_manager,
        scanner=scanner,
    )
    job = await store.create_job(request.profile.id, work_item_id=request.work_item.id)
    await store.start_job(job.id)
    gate = RunControlGate(control, poll_interval_s=0.001) if control is not None else None
    outcome = await loop.run(job.id, request, gate=gate)
    payloads = [m.payload for m in await store.list_messages_by_job(job.id)]
    return outcome, payloads, store, job.id


def _session_error() -> ToolCallResult:
    return ToolCallResult(
        success=False,
        error="websocket closed unexpectedly",
        meta=ToolResultMeta(session_error=True),
    )


def test_parse_tool_arguments_only_accepts_objects():
    assert parse_tool_arguments('{"cmd": "ls"}') == {"cmd": "ls"}
    assert parse_tool_arguments("[1, 2]") == {}
    assert parse_tool_arguments("not json") == {}
    assert parse_tool_arguments("") == {}
    assert parse_tool_arguments(None) == {}


def test_steer_between_calls_skips_the_rest_of_the_batch():
    control = InMemoryRunControl()
    executor = RecordingExecutor()

    def _arrive(name, context):
        if context.tool_call_id == "A":
            control.steer("use the staging cluster instead", sender_name="Dana")

    executor.before_call = _arrive
    provider = ScriptedProvider(
        [tool_reply(("A", "bash"), ("B", "bash")), reply("switched to staging")]
    )
    telemetry = InMemoryTelemetrySink()
    outcome, payloads, _, _ = run_async(
        _run(provider, make_request(tools=TOOLS), executor, control=control, telemetry=telemetry)
    )

    assert [call[0] for call in executor.calls] == ["bash"]
    assert payloads[3] == ToolPayload(tool_call_id="A", content="bash ok", tool_name="bash")
    assert payloads[4] == ToolPayload(tool_call_id="B", content=TOOL_SKIPPED_CONTENT, tool_name="bash")
    assert payloads[5] == SystemPayload(text=steer_system_note("mid_run"))
    assert payloads[6].kind == "user"
    assert payloads[6].text == "[Dana] use the staging cluster instead"
    assert outcome.final_response == "switched to staging"
    assert outcome.tool_message_count == 2

    prompt = provider.requests[1].messages
    assert [m.role for m in prompt[-3:]] == ["tool", "system", "user"]
    assert prompt[-2].content == STEER_PRIORITY_NOTE
    assert control.pending_steering == 0
    steer_events = [e for e in telemetry.events() if e.name == "agent.steer.injected"]
    assert [e.attributes["phase"] for e in steer_events] == ["mid_run"]


def test_steer_at_top_of_turn_is_injected_before_the_model_call():
    control = InMemoryRunControl()
    control.steer("actually, only check the README")
    provider = ScriptedProvider([reply("README looks fine")])
    outcome, payloads, _, _ = run_async(
        _run(provider, make_request(), RecordingExecutor(), control=control)
    )

    assert outcome.turns == 1
    assert [p.kind for p in payloads] == ["system", "user", "system", "user", "assistant"]
    assert payloads[3] == UserPayload(text="[User] actually, only check the README")
    assert provider.requests[0].messages[-1].content == "[User] actually, only check the README"


def test_non_function_calls_are_ignored():
    provider = ScriptedProvider(
        [
            ChatResponse(
                text=None,
                tool_calls=[
                    ToolCall(id="x1", tool_name="web_search", type="builtin"),
                    ToolCall(id="c1", tool_name="bash"),
                ],
                finish_reason="tool_calls",
            ),
            reply("ok"),
        ]
    )
    executor = RecordingExecutor()
    outcome, payloads, _, _ = run_async(_run(provider, make_request(tools=TOOLS), executor))

    assert [call[0] for call in executor.calls] == ["bash"]
    assert [p.tool_call_id for p in payloads if isinstance(p, ToolPayload)] == ["c1"]
    assert outcome.tool_message_count == 1


def test_session_error_gives_up_after_bounded_retries():
    manager = FakeSessionManager()
    executor = _SequenceExecutor([_session_error()])
    telemetry = InMemoryTelemetrySink()
    provider = ScriptedProvider([tool_reply(("c1", "bash")), reply("giving up")])
    _, payloads, _, _ = run_async(
        _run(
            provider,
            make_request(tools=TOOLS, sprite_name="sprite-a"),
            executor,
            session_manager=manager,
            telemetry=telemetry,
        )
    )

    assert len(executor.calls) == 3
    assert len(manager.acquired) == 3
    assert all(session.closed for session in manager.acquired)
    tool_payload = next(p for p in payloads if isinstance(p, ToolPayload))
    assert tool_payload.content == f"Error: {SESSION_LOST_ERROR}"
    retries = telemetry.spans("session_retry")
    assert [s["attributes"]["retry_number"] for s in retries] == [1, 2]
    assert all(s["status"] == "error" for s in retries)


def test_session_error_recovers_on_retry():
    manager = FakeSessionManager()
    executor = _SequenceExecutor([_session_error(), ToolCallResult(success=True, output="built")])
    provider = ScriptedProvider([tool_reply(("c1", "bash")), reply("built it")])
    _, payloads, _, _ = run_async(
        _run(
            provider,
            make_request(tools=TOOLS, sprite_name="sprite-a"),
            executor,
            session_manager=manager,
        )
    )

    assert len(executor.calls) == 2
    assert manager.acquired[0].closed is True
    assert executor.sessions[1] is manager.acquired[1]
    tool_payload = next(p for p in payloads if isinstance(p, ToolPayload))
    assert tool_payload.content == "built"


def test_no_session_without_a_sprite():
    manager = FakeSessionManager()
    executor = _SequenceExecutor([ToolCallResult(success=True, output="local")])
    provider = ScriptedProvider([tool_reply(("c1", "bash")), reply("ok")])
    run_async(_run(provider, make_request(tools=TOOLS), executor, session_manager=manager))

    assert manager.acquired == []
    assert executor.sessions == [None]


def test_invalidated_session_is_recreated_with_recovery_notice():
    manager = FakeSessionManager()
    executor = _SequenceExecutor(
        [
            ToolCallResult(success=False, error="timed out", meta=ToolResultMeta(session_invalidated=True)),
            ToolCallResult(success=True, output="pwd ok"),
        ]
    )
    provider = ScriptedProvider([tool_reply(("A", "bash"), ("B", "bash")), reply("done")])
    _, payloads, _, _ = run_async(
        _run(
            provider,
            make_request(tools=TOOLS, sprite_name="sprite-a"),
            executor,
            session_manager=manager,
        )
    )

    assert len(manager.acquired) == 2
    assert executor.sessions[1] is manager.acquired[1]
    kinds = [p.kind for p in payloads]
    assert kinds[2:6] == ["assistant", "tool", "tool", "system"]
    assert payloads[5] == SystemPayload(text=session_recovery_notice("/home/sprite"))


def test_cwd_change_queues_directory_context_for_next_call():
    scanner = _Scanner()
    executor = _SequenceExecutor([ToolCallResult(success=True, output="", meta=ToolResultMeta(cwd="/work/app"))])
    provider = ScriptedProvider([tool_reply(("c1", "bash")), tool_reply(("c2", "bash")), reply("ok")])
    _, payloads, _, _ = run_async(
        _run(provider, make_request(tools=TOOLS), executor, scanner=scanner)
    )

    assert scanner.scanned == ["/work/app"]
    context = "Contents of /work/app: src/ tests/"
    assert provider.requests[1].messages[-1].content == context
    assert SystemPayload(text=f"[Directory context injected for /work/app: {len(context)} chars]") in payloads
    assert sum(1 for m in provider.requests[2].messages if m.content == context) == 1


def test_sandbox_switch_moves_the_run_to_a_fresh_session():
    manager = FakeSessionManager()
    scanner = _Scanner()
    telemetry = InMemoryTelemetrySink()
    switch = SandboxSwitch(sandbox_name="box-b", sprite_name="sprite-b")
    executor = RecordingExecutor(
        {
            "A": ToolCallResult(
                success=True,
                output="switched",
                meta=ToolResultMeta(cwd="/work/app", sandbox_switch=switch),
            )
        }
    )
    provider = ScriptedProvider([tool_reply(("A", "bash"), ("B", "bash")), reply("on box-b now")])
    _, payloads, _, _ = run_async(
        _run(
            provider,
            make_request(tools=TOOLS, sprite_name="sprite-a", sandbox_name="box-a"),
            executor,
            session_manager=manager,
            scanner=scanner,
            telemetry=telemetry,
        )
    )

    old, new = manager.acquired
    assert old.session_id == "sprite-a:1"
    assert old.closed is True
    assert new.session_id == "sprite-b:2"
    assert new.closed is False

    first, second = [call[2] for call in executor.calls]
    assert (first.sprite_name, first.sandbox_name, first.session) == ("sprite-a", "box-a", old)
    assert (second.sprite_name, second.sandbox_name, second.session) == ("sprite-b", "box-b", new)
    assert second.cwd == "/home/sprite"

    assert scanner.scanned == ["/home/sprite"]
    assert scanner.sprites == ["sprite-b"]
    context = "Contents of /home/sprite: src/ tests/"
    assert provider.requests[1].messages[-1].content == context
    assert SystemPayload(text=f"[Directory context injected for /home/sprite: {len(context)} chars]") in payloads

    switched, after = telemetry.spans("tool_exec")
    assert switched["attributes"]["sandbox_switch_to"] == "box-b"
    assert switched["attributes"]["sprite"] == "sprite-b"
    assert "sandbox_switch_to" not in after["attributes"]


def test_repeated_identical_tool_error_is_logged_once(caplog):
    caplog.set_level(logging.WARNING, logger="agentrun.core.tool_batch")
    denied = ToolCallResult.failure("permission denied")
    ids = ["c1", "c2", "c3", "c4", "c5", "c6"]
    results = {call_id: denied for call_id in ids}
    results["c3"] = ToolCallResult.failure("disk full")
    executor = RecordingExecutor(results)
    telemetry = InMemoryTelemetrySink()
    provider = ScriptedProvider(
        [tool_reply(*[(call_id, "bash") for call_id in ids]), reply("stopping here")]
    )
    outcome, payloads, _, _ = run_async(
        _run(provider, make_request(tools=TOOLS), executor, telemetry=telemetry)
    )

    repeated = [r for r in caplog.records if r.getMessage().startswith("Repeated tool error")]
    assert len(repeated) == 1
    assert "failed 4 times" in repeated[0].getMessage()
    assert "permission denied" in repeated[0].getMessage()

    assert len(executor.calls) == 6
    contents = [p.content for p in payloads if isinstance(p, ToolPayload)]
    assert contents == ["Error: permission denied"] * 2 + ["Error: disk full"] + ["Error: permission denied"] * 3
    assert outcome.final_response == "stopping here"
    assert outcome.turns == 2
    assert [s["attributes"]["repeat_count"] for s in telemetry.spans("tool_exec")] == [1, 2, 1, 3, 4, 5]


def test_pre_exec_hook_can_block_and_rewrite_calls():
    hooks = HookRegistry()

    @hooks.on("tool.pre_exec")
    def _policy(ctx, data):
        if data["tool_call_id"] == "c1":
            return HookResult(data=data, blocked=True, reason="destructive")
        return {**data, "tool_input": {"cmd": "ls -la"}}

    executor = RecordingExecutor()
    provider = ScriptedProvider([tool_reply(("c1", "bash"), ("c2", "bash")), reply("ok")])
    _, payloads, _, _ = run_async(
        _run(provider, make_request(tools=TOOLS), executor, hooks=hooks)
    )

    tool_payloads = [p for p in payloads if isinstance(p, ToolPayload)]
    assert tool_payloads[0].content == TOOL_BLOCKED_CONTENT
    assert len(executor.calls) == 1
    assert executor.calls[0][1] == {"cmd": "ls -la"}


def test_post_exec_hook_rewrites_output():
    hooks = HookRegistry()
    hooks.register(
        "tool.post_exec",
        lambda ctx, data: {**data, "result": {**data["result"], "output": "[redacted]"}},
    )
    provider = ScriptedProvider([tool_reply(("c1", "bash")), reply("ok")])
    _, payloads, _, _ = run_async(
        _run(provider, make_request(tools=TOOLS), RecordingExecutor(), hooks=hooks)
    )

    assert next(p for p in payloads if isinstance(p, ToolPayload)).content == "[redacted]"


def test_long_results_are_truncated_and_failures_prefixed():
    executor = _SequenceExecutor(
        [
            ToolCallResult(success=True, output="x" * 5_000),
            ToolCallResult.failure("command not found", output="partial"),
        ]
    )
    provider = ScriptedProvider([tool_reply(("c1", "bash"), ("c2", "bash")), reply("ok")])
    _, payloads, _, _ = run_async(
        _run(
            provider,
            make_request(tools=TOOLS),
            executor,
            settings=quick_settings(tool_result_max_chars=1_000),
        )
    )

    first, second = [p for p in payloads if isinstance(p, ToolPayload)]
    assert len(first.content) < 1_100
    assert "[tool output truncated: omitted" in first.content
    assert second.content == "partial\n\nError: command not found"


def test_executor_exceptions_become_failed_results():
    class _Exploding:
        async def execute(self, name, arguments, context):
            raise RuntimeError("executor offline")

    provider = ScriptedProvider([tool_reply(("c1", "bash")), reply("ok")])
    _, payloads, _, _ = run_async(_run(provider, make_request(tools=TOOLS), _Exploding()))

    assert next(p for p in payloads if isinstance(p, ToolPayload)).content == "Error: executor offline"


def test_external_api_costs_are_recorded_against_the_job():
    cost = ExternalApiCost(provider="serpapi", operation="search", cost_usd=0.01)
    executor = _SequenceExecutor(
        [ToolCallResult(success=True, output="results", meta=ToolResultMeta(external_api_cost=cost))]
    )
    provider = ScriptedProvider([tool_reply(("c1", "web_search")), reply("ok")])

    async def scenario():
        _, _, store, job_id = await _run(provider, make_request(tools=TOOLS), executor)
        return await store.list_external_api_costs(job_id), await store.total_cost_for_agent("agent-1")

    records, total = run_async(scenario())
    assert [(r.provider, r.operation, r.tool_call_id) for r in records] == [("serpapi", "search", "c1")]
    assert total == 0.01
