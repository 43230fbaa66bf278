"""
Fixed prompt and transcript templates used by the run loop.

Retry seeding recognises the failure templates by prefix, so changing their
wording strands previously stored transcripts.
"""

from __future__ import annotations

from .types import SteerPhase, SteeringMessage

STEER_PRIORITY_NOTE = (
    "A newer user message arrived while you were working. Treat the newest user "
    "message as the highest-priority instruction and adapt immediately."
)

TOOL_SKIPPED_CONTENT = "[Tool skipped — new message arrived from user]"
TOOL_CANCELLED_CONTENT = "[Tool skipped — run cancelled]"
TOOL_BLOCKED_CONTENT = "Error: Tool execution blocked by plugin policy"
SESSION_LOST_ERROR = (
    "Session connection lost (transient infrastructure issue). The session has "
    "been reset. Please retry this command."
)

CANCELLED_FAILURE_PREFIX = "This run was cancelled by an operator before completion."
INTERNAL_FAILURE_PREFIX = "I hit an internal error and could not complete this request."
FAILURE_PREFIXES = (CANCELLED_FAILURE_PREFIX, INTERNAL_FAILURE_PREFIX)


def steer_system_note(phase: SteerPhase) -> str:
    return f"[Steer {phase}] {STEER_PRIORITY_NOTE}"


def steer_user_text(messages: list[SteeringMessage]) -> str:
    return "\n".join(f"[{m.sender_name or 'User'}] {m.text}" for m in messages)


def turn_warning(turns_remaining: int) -> str:
    return (
        f"You have {turns_remaining} turns remaining before hitting your tool use limit. "
        "Wrap up your current task and provide a final response. Do not start new work."
    )


def cost_warning(details: str) -> str:
    return f"{details}. Finish your current task and wrap up efficiently."


def turn_limit_message(max_turns: int) -> str:
    return (
        f"I hit my tool use limit ({max_turns} turns) before completing the task. "
        "This might indicate I got stuck in a loop. Please try rephrasing your "
        "request or breaking it into smaller steps."
    )


def failure_message(error: str, *, cancelled: bool) -> str:
    if cancelled:
        return f"{CANCELLED_FAILURE_PREFIX}\n\nError: Run cancelled by operator."
    return f"{INTERNAL_FAILURE_PREFIX}\n\nError: {error}"


def session_recovery_notice(cwd: str) -> str:
    return (
        f'[Session recovered after timeout: started a new shell at "{cwd}". '
        "Filesystem changes were preserved; shell state was reset.]"
    )


def retry_seed_note(
    job_id: str,
    count: int,
    *,
    dropped_incomplete_trailing_turn: bool,
    skipped_initial_duplicate_user: bool,
) -> str:
    return (
        f"[Retry seed injected from job {job_id}: {count} prompt message(s), "
        f"dropped incomplete trailing turn={str(dropped_incomplete_trailing_turn).lower()}, "
        f"skipped initial duplicate user message={str(skipped_initial_duplicate_user).lower()}]"
    )


POST_PROCESS_SYSTEM_PROMPT = (
    "You turn an agent's working transcript into the single reply that will be "
    "sent to the user. Write the answer the user asked for, using the facts the "
    "agent established. Do not describe the agent's process or mention tools, "
    "turns or the transcript. If the agent did not finish, say plainly what was "
    "done and what remains."
)
