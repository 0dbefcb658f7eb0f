"""Line reassembly for chunked PTY output."""

from __future__ import annotations

import re

_NEWLINE_RE = re.compile(r"\r?\n")


class LineReassembler:
    """Splits a chunked text stream into complete lines.

    Chunks arrive with no delimiter guarantees. Everything after the last
    newline is held back as a pending fragment and prepended to the next
    chunk. The fragment is kept as a list of pieces so that many small
    chunks without a newline cost one join, not one copy each.
    """

    def __init__(self) -> None:
        self._pending: list[str] = []

    def feed(self, chunk: str) -> list[str]:
        """Return the lines completed by ``chunk``, delimiters removed."""
        if not chunk:
            return []

        idx = chunk.rfind("\n")
        if idx < 0:
            self._pending.append(chunk)
            return []

        head = "".join(self._pending) + chunk[:idx]
        tail = chunk[idx + 1 :]
        self._pending = [tail] if tail else []

        lines = _NEWLINE_RE.split(head)
        # The delimiter we cut on may have been the "\n" of a "\r\n"
        if lines[-1].endswith("\r"):
            lines[-1] = lines[-1][:-1]
        return lines

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def reset(self) -> None:
        """Drop the pending fragment without emitting it."""
        self._pending = []
