from __future__ import annotations

import pytest

from agentrun.agents.errors import AgentConfigurationError
from agentrun.core.settings import MAX_SESSION_RETRIES, RunnerSettings


def test_defaults():
    settings = RunnerSettings()
    assert settings.max_turns == 500
    assert settings.turn_warning_threshold == 20
    assert settings.tool_result_max_chars == 60_000
    assert settings.max_session_retries == 2
    assert settings.max_last_look_passes == 3


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("AGENTRUN_MAX_TURNS", "40")
    monkeypatch.setenv("AGENTRUN_PAUSE_POLL_INTERVAL_S", "0.25")
    monkeypatch.setenv("AGENTRUN_DEFAULT_CWD", "/srv/work")

    settings = RunnerSettings.from_env()
    assert settings.max_turns == 40
    assert settings.pause_poll_interval_s == 0.25
    assert settings.default_cwd == "/srv/work"
    assert settings.max_session_retries == 2


@pytest.mark.parametrize("raw", ["zero", "0", "-3"])
def test_from_env_rejects_bad_turn_budgets(monkeypatch, raw):
    monkeypatch.setenv("AGENTRUN_MAX_TURNS", raw)
    with pytest.raises(AgentConfigurationError, match="AGENTRUN_MAX_TURNS"):
        RunnerSettings.from_env()


def test_from_env_caps_session_retries(monkeypatch):
    monkeypatch.setenv("AGENTRUN_MAX_SESSION_RETRIES", "9")
    assert RunnerSettings.from_env().max_session_retries == MAX_SESSION_RETRIES == 2

    monkeypatch.setenv("AGENTRUN_MAX_SESSION_RETRIES", "1")
    assert RunnerSettings.from_env().max_session_retries == 1


@pytest.mark.parametrize("value", [-1, 3, 10])
def test_session_retries_outside_bound_are_rejected(value):
    with pytest.raises(AgentConfigurationError, match="max_session_retries"):
        RunnerSettings(max_session_retries=value)
