"""
Runtime settings for the run loop.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from ..agents.errors import AgentConfigurationError

# Session recreation attempts after a session error never exceed this.
MAX_SESSION_RETRIES = 2


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise AgentConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise AgentConfigurationError(f"{name} must be positive, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise AgentConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class RunnerSettings:
    """
    Runtime limits and timings for run execution.

    Attributes:
        max_turns: Default turn budget when a request sets none.
        turn_warning_threshold: Remaining-turn count at which the wrap-up
            warning is injected.
        tool_result_max_chars: Tool result content budget before truncation.
        model_input_max_chars: Prompt size above which compaction kicks in.
        pause_poll_interval_s: Sleep between polls while paused.
        max_session_retries: Session recreation attempts after a session error,
            at most `MAX_SESSION_RETRIES`.
        session_create_retry_delay_s: Back-off after a failed session creation.
        max_last_look_passes: Bound on post-completion steering passes.
        repeated_tool_error_log_threshold: Occurrence count at which a repeated
            tool error is logged.
        default_cwd: Working directory assumed for a fresh session.
        post_process_temperature: Temperature of the final-reply synthesis call.
        event_buffer_size: Per-job event history kept by the event bus.
    """

    max_turns: int = 500
    turn_warning_threshold: int = 20
    tool_result_max_chars: int = 60_000
    model_input_max_chars: int = 6_500_000
    pause_poll_interval_s: float = 1.0
    max_session_retries: int = MAX_SESSION_RETRIES
    session_create_retry_delay_s: float = 2.0
    max_last_look_passes: int = 3
    repeated_tool_error_log_threshold: int = 4
    default_cwd: str = "/home/sprite"
    post_process_temperature: float = 0.3
    event_buffer_size: int = 500

    def __post_init__(self) -> None:
        if not 0 <= self.max_session_retries <= MAX_SESSION_RETRIES:
            raise AgentConfigurationError(
                f"max_session_retries must be between 0 and {MAX_SESSION_RETRIES}, "
                f"got {self.max_session_retries}"
            )

    @staticmethod
    def from_env() -> "RunnerSettings":
        defaults = RunnerSettings()
        return RunnerSettings(
            max_turns=_env_int("AGENTRUN_MAX_TURNS", defaults.max_turns),
            turn_warning_threshold=_env_int(
                "AGENTRUN_TURN_WARNING_THRESHOLD", defaults.turn_warning_threshold
            ),
            tool_result_max_chars=_env_int(
                "AGENTRUN_TOOL_RESULT_MAX_CHARS", defaults.tool_result_max_chars
            ),
            model_input_max_chars=_env_int(
                "AGENTRUN_MODEL_INPUT_MAX_CHARS", defaults.model_input_max_chars
            ),
            pause_poll_interval_s=_env_float(
                "AGENTRUN_PAUSE_POLL_INTERVAL_S", defaults.pause_poll_interval_s
            ),
            max_session_retries=min(
                _env_int("AGENTRUN_MAX_SESSION_RETRIES", defaults.max_session_retries),
                MAX_SESSION_RETRIES,
            ),
            session_create_retry_delay_s=_env_float(
                "AGENTRUN_SESSION_CREATE_RETRY_DELAY_S",
                defaults.session_create_retry_delay_s,
            ),
            max_last_look_passes=_env_int(
                "AGENTRUN_MAX_LAST_LOOK_PASSES", defaults.max_last_look_passes
            ),
            repeated_tool_error_log_threshold=defaults.repeated_tool_error_log_threshold,
            default_cwd=os.getenv("AGENTRUN_DEFAULT_CWD", defaults.default_cwd),
            post_process_temperature=_env_float(
                "AGENTRUN_POST_PROCESS_TEMPERATURE", defaults.post_process_temperature
            ),
            event_buffer_size=_env_int(
                "AGENTRUN_EVENT_BUFFER_SIZE", defaults.event_buffer_size
            ),
        )
