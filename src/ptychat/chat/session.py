"""Chat session — hosts a chat pipeline on top of a PTY.

The PTY reader delivers output chunks in order; every pipeline call is
made under one lock so UI-triggered operations (submit, clear) never
interleave with a chunk half-way through the pipeline. Each resulting
delta is published on the wire before the lock is released, so
subscribers see changes in the order they happened.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from ptychat.chat.aggregator import StateDelta, TurnState
from ptychat.chat.message import MessageSnapshot
from ptychat.chat.pipeline import ChatPipeline
from ptychat.config import PtychatConfig
from ptychat.pty.base import TerminalProcess
from ptychat.pty.session import PTYOpenError
from ptychat.session.directory import DirectoryTracker
from ptychat.session.wire import Wire

if TYPE_CHECKING:
    from ptychat.pty.manager import PTYManager

logger = logging.getLogger(__name__)

OPEN_ERROR_BANNER = "Error: Failed to open terminal session."


class ChatSession:
    """A conversation with whatever runs in the chat PTY."""

    def __init__(
        self,
        process: TerminalProcess,
        wire: Wire | None = None,
        config: PtychatConfig | None = None,
        tracker: DirectoryTracker | None = None,
    ) -> None:
        self.process = process
        self.wire = wire or Wire()
        self.config = config or PtychatConfig()
        self.tracker = tracker or DirectoryTracker()

        chat = self.config.chat
        self._pipeline = ChatPipeline(
            tracker=self.tracker,
            keep_styling=chat.keep_styling,
            noise_min_length=chat.noise_min_length,
            suppress_echo=chat.suppress_echo,
            max_pending=self.config.scanner.max_pending,
        )
        self._lock = threading.Lock()
        self._subscribed = False

    @classmethod
    def create(
        cls,
        manager: PTYManager,
        config: PtychatConfig,
        wire: Wire | None = None,
        cwd: str | None = None,
    ) -> ChatSession:
        """Build a chat session on a fresh PTY tracked by ``manager``."""
        terminal = config.terminal
        process = manager.create(
            [terminal.shell],
            cwd=cwd,
            env=terminal.env,
            title="chat",
            term=config.chat.term,
            report_cwd=terminal.report_cwd,
        )
        return cls(process, wire=wire, config=config)

    # --- Views ---

    @property
    def messages(self) -> list[MessageSnapshot]:
        with self._lock:
            return self._pipeline.messages

    @property
    def state(self) -> TurnState:
        with self._lock:
            return self._pipeline.state

    @property
    def cwd(self) -> str:
        return self.tracker.cwd

    @property
    def tool_active(self) -> bool:
        with self._lock:
            return self._pipeline.tool_active

    # --- Lifecycle ---

    async def open(self) -> bool:
        """Open the PTY and launch the configured tool.

        Returns False (after publishing an error banner) if the PTY could
        not be opened. There is no automatic retry; see ``restart``.
        """
        terminal = self.config.terminal
        self._attach()
        try:
            await self.process.open(terminal.cols, terminal.rows)
        except PTYOpenError as e:
            self._detach()
            logger.error("Chat PTY failed to open: %s", e)
            self.wire.send_error(f"{OPEN_ERROR_BANNER} {e}")
            return False

        tool = self.config.chat.tool
        if tool:
            await asyncio.sleep(self.config.chat.launch_delay)
            if self.process.alive:
                self.launch_tool(tool)
        return True

    async def restart(self) -> bool:
        """Close the PTY, empty the conversation and open again."""
        self.close()
        with self._lock:
            self.wire.send_delta(self._pipeline.clear())
        return await self.open()

    def close(self) -> None:
        """Stop listening and kill the PTY. Partial output is discarded."""
        self._detach()
        with self._lock:
            self._pipeline.close()
        self.process.close()

    def _attach(self) -> None:
        if not self._subscribed:
            self.process.subscribe(self._on_output)
            self._subscribed = True

    def _detach(self) -> None:
        if self._subscribed:
            self.process.unsubscribe(self._on_output)
            self._subscribed = False

    # --- PTY output ---

    def _on_output(self, chunk: str) -> None:
        with self._lock:
            delta = self._pipeline.feed(chunk)
            if not delta.is_empty:
                self.wire.send_delta(delta)

    # --- User actions ---

    def launch_tool(self, tool_id: str) -> None:
        command = self.config.chat.command_for(tool_id)
        logger.info("Launching %s in chat PTY %s", command, self.process.id)
        self.process.write(f"{command}\r")
        with self._lock:
            self._pipeline.tool_active = True

    def submit_user_input(self, text: str) -> StateDelta | None:
        """Record the user's turn and send it to the PTY.

        Blank input is ignored and returns None. If the PTY refuses the
        write, the error propagates and the conversation is left as it was.
        """
        if not text.strip():
            return None
        with self._lock:
            # Output reaching the listener waits on the lock, so the echo
            # is still matched against this submission
            self.process.write(f"{text}\r")
            delta = self._pipeline.submit_user(text)
            self.wire.send_delta(delta)
        return delta

    def clear(self) -> None:
        """Empty the conversation and clear the PTY screen."""
        with self._lock:
            self.wire.send_delta(self._pipeline.clear())
        if self.process.alive:
            self.process.write("clear\r")

    def change_directory(self, path: str) -> None:
        # The tracker follows once the shell reports the new directory
        quoted = path.replace("\\", "\\\\").replace('"', '\\"')
        self.process.write(f'cd "{quoted}"\r')

    def run_command(self, command: str) -> None:
        self.process.write(f"{command}\r")

    def resize(self, cols: int, rows: int) -> None:
        self.process.resize(cols, rows)
