"""
Remote session and working-directory tracking for one run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..tools.types import SandboxSession, SandboxSessionManager, SandboxSwitch

logger = logging.getLogger(__name__)


class DirectoryScanner(Protocol):
    """Produces directory context for the model after the cwd moves."""

    async def scan(self, *, sprite_name: str | None, cwd: str) -> str | None:
        ...


class SessionTracker:
    """
    Owns the run's remote session handle and tracked working directory.

    The session is created lazily on first use and recreated on demand after
    a session error. Sessions are keyed by (session_key, agent_id) on the
    manager side, so recreation is idempotent.
    """

    def __init__(
        self,
        manager: SandboxSessionManager | None,
        *,
        agent_id: str,
        session_key: str,
        sprite_name: str | None,
        sandbox_name: str | None,
        cwd: str | None,
        default_cwd: str,
        create_retry_delay_s: float = 2.0,
    ) -> None:
        self._manager = manager
        self.agent_id = agent_id
        self.session_key = session_key
        self.sprite_name = sprite_name
        self.sandbox_name = sandbox_name
        self.default_cwd = default_cwd
        self.cwd = cwd or default_cwd
        self.last_scanned_cwd: str | None = None
        self.session: SandboxSession | None = None
        self.directory_stale = False
        self.recovery_notice_pending = False
        self._create_retry_delay_s = create_retry_delay_s

    async def ensure_session(self) -> SandboxSession | None:
        """Return the live session, creating it when missing."""
        if self.session is not None:
            return self.session
        if self._manager is None or not self.sprite_name:
            return None
        for attempt in range(2):
            try:
                self.session = await self._manager.acquire(
                    sprite_name=self.sprite_name,
                    session_key=self.session_key,
                    agent_id=self.agent_id,
                    cwd=self.cwd,
                )
                logger.debug(
                    "Session %s acquired on %s", self.session.session_id, self.sprite_name
                )
                return self.session
            except Exception as e:
                logger.warning(
                    "Session creation on %s failed (attempt %d): %s",
                    self.sprite_name,
                    attempt + 1,
                    e,
                )
                if attempt == 0:
                    await asyncio.sleep(self._create_retry_delay_s)
        return None

    async def close_session(self) -> None:
        """Close the current session, ignoring close failures."""
        session, self.session = self.session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:
            logger.warning("Closing session %s failed: %s", session.session_id, e)

    async def recreate_session(self) -> SandboxSession | None:
        await self.close_session()
        session = await self.ensure_session()
        if session is not None:
            logger.info("Session recreated on %s", self.sprite_name)
        return session

    def invalidate(self) -> None:
        """Drop the handle after a remote reset; the next call recreates it."""
        self.session = None
        self.recovery_notice_pending = True

    def update_cwd(self, cwd: str) -> None:
        self.cwd = cwd

    async def switch(self, target: SandboxSwitch) -> None:
        await self.close_session()
        self.sandbox_name = target.sandbox_name
        self.sprite_name = target.sprite_name
        self.cwd = self.default_cwd
        self.last_scanned_cwd = None
        self.directory_stale = True
        logger.info("Switched to sandbox %s on %s", target.sandbox_name, target.sprite_name)

    def take_recovery_notice(self) -> bool:
        pending = self.recovery_notice_pending
        self.recovery_notice_pending = False
        return pending

    async def rescan(self, scanner: DirectoryScanner | None) -> str | None:
        """
        Scan the tracked cwd when it differs from the last scanned one.

        Scanner failures are logged and yield no context.
        """
        if scanner is None:
            return None
        if self.cwd == self.last_scanned_cwd and not self.directory_stale:
            return None
        self.directory_stale = False
        self.last_scanned_cwd = self.cwd
        try:
            return await scanner.scan(sprite_name=self.sprite_name, cwd=self.cwd)
        except Exception as e:
            logger.warning("Directory scan of %s failed: %s", self.cwd, e)
            return None
