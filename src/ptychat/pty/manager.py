"""PTY Manager — manages multiple PTY sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ptychat.pty.session import PTYSession

if TYPE_CHECKING:
    from ptychat.session.wire import Wire

logger = logging.getLogger(__name__)


class PTYManager:
    """Manages the lifecycle of multiple PTY sessions.

    The chat view and the terminal view each own an independent PTY;
    both go through here. The manager ensures:
    - Sessions are tracked by ID, oldest first
    - All sessions are killed on cleanup (no orphan processes)
    - Session limits are enforced
    - Exit notifications are fired via Wire (if attached)
    """

    MAX_SESSIONS = 10

    def __init__(self, wire: Wire | None = None) -> None:
        self._sessions: dict[str, PTYSession] = {}
        self._wire = wire

    def create(
        self,
        command: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        title: str = "",
        term: str = "xterm-256color",
        report_cwd: bool = True,
    ) -> PTYSession:
        """Create and track a PTY session without starting it.

        Args:
            command: Command and arguments (e.g., ["bash", "-i"]).
            cwd: Working directory.
            env: Additional environment variables.
            title: Human-readable title for the session.
            term: Value of TERM inside the PTY.
            report_cwd: Make the shell emit OSC-7 cwd reports.
        """
        if len(self._sessions) >= self.MAX_SESSIONS:
            # Kill the oldest session
            oldest = next(iter(self._sessions))
            logger.warning("Max sessions reached, killing oldest: %s", oldest)
            self.kill(oldest)

        session = PTYSession(
            command=command,
            cwd=cwd or ".",
            env=env or {},
            title=title,
            term=term,
            report_cwd=report_cwd,
        )

        # Wire up exit notification
        if self._wire:
            wire = self._wire

            def _on_exit(s: PTYSession, exit_code: int | None) -> None:
                tail = s.buffer.read_tail(3)
                last_output = "\n".join(tail) if tail else ""
                wire.send_pty_exit(s.id, s.title, exit_code, last_output)

            session.set_on_exit(_on_exit)

        self._sessions[session.id] = session
        return session

    def kill(self, session_id: str) -> None:
        """Kill a session and remove it from tracking."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.close()

    def cleanup(self) -> None:
        """Kill all sessions. Called on shutdown."""
        for session_id in list(self._sessions.keys()):
            self.kill(session_id)
        logger.info("All PTY sessions cleaned up")

    def __len__(self) -> int:
        return len(self._sessions)
