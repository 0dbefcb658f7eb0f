"""Rolling output buffer for PTY sessions."""

from __future__ import annotations

import threading
from collections import deque

from ptychat.stream.escape import sanitize_binary_output, strip_ansi
from ptychat.stream.lines import LineReassembler


class RollingBuffer:
    """Thread-safe rolling buffer of cleaned PTY output lines.

    Keeps the last ``max_lines`` lines, ANSI-stripped and
    binary-sanitized, for exit notices and the TUI's terminal pane.
    Chunks are split on newlines with a :class:`LineReassembler`, so a
    line that arrives in several reads is stored once.
    """

    def __init__(self, max_lines: int = 50_000) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._reassembler = LineReassembler()
        self._lock = threading.Lock()

    def append_text(self, raw_text: str) -> None:
        """Append a raw output chunk; only completed lines are stored."""
        with self._lock:
            for raw_line in self._reassembler.feed(raw_text):
                self._lines.append(sanitize_binary_output(strip_ansi(raw_line)))

    def read_tail(self, n: int = 100) -> list[str]:
        """Read the last N lines."""
        with self._lock:
            lines = list(self._lines)
        return lines[-n:] if len(lines) > n else lines

    def clear(self) -> None:
        """Clear the buffer, including any partial line."""
        with self._lock:
            self._lines.clear()
            self._reassembler.reset()
