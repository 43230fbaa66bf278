from __future__ import annotations

from fakes import FakeSessionManager, run_async

from agentrun.core.sandbox import SessionTracker
from agentrun.tools.types import SandboxSwitch


def _tracker(manager=None, **overrides) -> SessionTracker:
    values = {
        "agent_id": "agent-1",
        "session_key": "sess-1",
        "sprite_name": "sprite-a",
        "sandbox_name": "box-a",
        "cwd": None,
        "default_cwd": "/home/sprite",
        "create_retry_delay_s": 0.0,
    }
    values.update(overrides)
    return SessionTracker(manager, **values)


def test_invalidate_drops_the_handle_without_closing_it():
    manager = FakeSessionManager()
    tracker = _tracker(manager)

    async def scenario():
        first = await tracker.ensure_session()
        tracker.invalidate()
        assert tracker.session is None
        second = await tracker.ensure_session()
        return first, second

    first, second = run_async(scenario())
    assert first is not second
    assert first.closed is False
    assert [s.session_id for s in manager.acquired] == ["sprite-a:1", "sprite-a:2"]
    assert tracker.take_recovery_notice() is True
    assert tracker.take_recovery_notice() is False


def test_close_session_clears_the_handle_and_allows_reacquire():
    manager = FakeSessionManager()
    tracker = _tracker(manager)

    async def scenario():
        first = await tracker.ensure_session()
        await tracker.close_session()
        assert tracker.session is None
        await tracker.close_session()
        return first, await tracker.ensure_session()

    first, second = run_async(scenario())
    assert first.closed is True
    assert second.closed is False
    assert tracker.recovery_notice_pending is False


def test_switch_resets_cwd_and_marks_directory_stale():
    manager = FakeSessionManager()
    tracker = _tracker(manager, cwd="/work/app")
    tracker.last_scanned_cwd = "/work/app"

    async def scenario():
        old = await tracker.ensure_session()
        await tracker.switch(SandboxSwitch(sandbox_name="box-b", sprite_name="sprite-b"))
        return old

    old = run_async(scenario())
    assert old.closed is True
    assert tracker.session is None
    assert (tracker.sandbox_name, tracker.sprite_name) == ("box-b", "sprite-b")
    assert tracker.cwd == "/home/sprite"
    assert tracker.last_scanned_cwd is None
    assert tracker.directory_stale is True


def test_failed_creation_yields_no_session():
    tracker = _tracker(FakeSessionManager(fail=True))
    assert run_async(tracker.ensure_session()) is None


def test_no_manager_or_sprite_means_no_session():
    assert run_async(_tracker(None).ensure_session()) is None
    assert run_async(_tracker(FakeSessionManager(), sprite_name=None).ensure_session()) is None
