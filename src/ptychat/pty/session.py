"""PTY session — a shell or agent CLI behind a pseudo-terminal."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
import uuid
from dataclasses import dataclass, field
from typing import Callable

from ptychat.pty.base import OutputListener
from ptychat.pty.buffer import RollingBuffer

logger = logging.getLogger(__name__)

# Makes bash report its cwd (OSC-7) every time it draws a prompt
OSC7_PROMPT_COMMAND = (
    'printf "\\033]7;file://%s%s\\007" "${HOSTNAME:-localhost}" "$PWD"'
)


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    NEW = "new"
    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Process exited on its own


class PTYOpenError(RuntimeError):
    """The process could not be started behind a PTY."""


@dataclass
class PTYSession:
    """A managed pseudo-terminal session.

    Wraps an interactive process (shell, agent CLI) with:
    - Process group isolation (start_new_session) for safe tree-killing
    - Incremental UTF-8 decoding, so multi-byte characters split across
      reads come out whole
    - Ordered delivery of output chunks to subscribed listeners
    - Rolling output buffer for exit notices
    - Exit notification callback

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    command: list[str] = field(default_factory=list)
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    title: str = ""
    term: str = "xterm-256color"
    report_cwd: bool = True

    # Internal state
    buffer: RollingBuffer = field(default_factory=RollingBuffer)
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pid: int = field(default=0, init=False)
    _pgid: int = field(default=0, init=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False)
    _generation: int = field(default=0, init=False)
    _status: PTYStatus = field(default=PTYStatus.NEW, init=False)
    _listeners: list[OutputListener] = field(default_factory=list, init=False)
    _on_exit: Callable[[PTYSession, int | None], None] | None = field(
        default=None, init=False
    )

    def set_on_exit(self, callback: Callable[[PTYSession, int | None], None]) -> None:
        """Set a callback to be invoked when the process exits unexpectedly.

        The callback receives (session, exit_code). It is called from the
        reader task when the process dies on its own, NOT when closed via
        close().
        """
        self._on_exit = callback

    def subscribe(self, listener: OutputListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: OutputListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def open(self, cols: int, rows: int) -> None:
        """Spawn the process in a new PTY with its own process group."""
        if self._status == PTYStatus.RUNNING:
            raise RuntimeError(f"PTY session {self.id} is already open")

        master_fd, slave_fd = pty.openpty()
        _set_winsize(master_fd, cols, rows)

        env = {**os.environ, **self.env}
        env["TERM"] = self.term
        env["COLUMNS"] = str(cols)
        env["LINES"] = str(rows)
        if self.report_cwd:
            env["PROMPT_COMMAND"] = OSC7_PROMPT_COMMAND
        else:
            env.pop("PROMPT_COMMAND", None)

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,  # Creates new process group
                env=env,
                cwd=self.cwd,
            )
        except OSError as e:
            os.close(master_fd)
            raise PTYOpenError(
                f"Failed to start {' '.join(self.command)!r}: {e}"
            ) from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pid = self._proc.pid
        self._pgid = os.getpgid(self._pid)
        self._status = PTYStatus.RUNNING
        self._generation += 1
        self.buffer.clear()

        self._reader_task = asyncio.create_task(
            self._read_loop(master_fd, self._generation)
        )

        logger.info(
            "PTY session %s started: pid=%d pgid=%d size=%dx%d cmd=%s",
            self.id,
            self._pid,
            self._pgid,
            cols,
            rows,
            " ".join(self.command),
        )

    def _current(self, generation: int) -> bool:
        return self._status == PTYStatus.RUNNING and generation == self._generation

    async def _read_loop(self, fd: int, generation: int) -> None:
        """Continuously read output from one opening of the PTY.

        A loop left over from before a close/open cycle sees a newer
        generation and stops without touching the session's state.
        """
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while self._current(generation):
                try:
                    data = await loop.run_in_executor(None, os.read, fd, 4096)
                except OSError:
                    break

                if not data or not self._current(generation):
                    break

                text = decoder.decode(data)
                if not text:
                    continue
                self.buffer.append_text(text)
                self._dispatch(text)
        except Exception as e:
            logger.debug("PTY reader %s ended: %s", self.id, e)
        finally:
            # Only transition to EXITED if we weren't killed or reopened
            if self._current(generation):
                exit_code = self._proc.poll() if self._proc else None
                self._status = PTYStatus.EXITED
                logger.info("PTY session %s exited (code=%s)", self.id, exit_code)
                if self._on_exit:
                    try:
                        self._on_exit(self, exit_code)
                    except Exception:
                        logger.exception(
                            "Error in on_exit callback for session %s", self.id
                        )

    def _dispatch(self, text: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(text)
            except Exception:
                logger.exception("Error in output listener for session %s", self.id)

    def write(self, data: str | bytes) -> None:
        """Send raw input (keystrokes, a command line) to the process."""
        if self._status != PTYStatus.RUNNING:
            raise RuntimeError(f"PTY session {self.id} is not running")
        if isinstance(data, str):
            data = data.encode()
        os.write(self._master_fd, data)

    def resize(self, cols: int, rows: int) -> None:
        """Change the terminal size seen by the process."""
        if cols <= 0 or rows <= 0:
            raise ValueError(f"Invalid terminal size {cols}x{rows}")
        if self._status != PTYStatus.RUNNING:
            return
        _set_winsize(self._master_fd, cols, rows)
        logger.debug("PTY session %s resized to %dx%d", self.id, cols, rows)

    def close(self) -> None:
        """Kill the entire process tree and release the PTY.

        The session can be opened again afterwards.
        """
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()

        if self._status == PTYStatus.EXITED:
            self._release()
            return
        if self._status not in (PTYStatus.RUNNING, PTYStatus.KILLING):
            return

        self._status = PTYStatus.KILLING
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY session %s (pgid=%d)", self.id, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing PTY session %s: %s", self.id, e)

        self._release()
        self._status = PTYStatus.KILLED

    def _release(self) -> None:
        # Reap the process (avoids zombies) and close the master side
        if self._proc is not None:
            try:
                self._proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("PTY session %s did not exit after SIGKILL", self.id)

        if self._master_fd >= 0:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = -1

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status

    def __del__(self) -> None:
        """Ensure cleanup on garbage collection."""
        if self._status in (PTYStatus.RUNNING, PTYStatus.KILLING):
            self.close()


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
