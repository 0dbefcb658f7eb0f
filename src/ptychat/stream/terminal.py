"""Raw-preserving output path for the plain terminal view."""

from __future__ import annotations

from typing import Callable

from ptychat.session.directory import DirectoryTracker
from ptychat.stream.escape import (
    DEFAULT_MAX_PENDING,
    EscapeScanner,
    Osc7,
    ScanMode,
    Visible,
)


class TerminalFeed:
    """Forwards PTY output to a terminal renderer unchanged.

    The renderer (a real terminal, an xterm widget) gets every byte,
    OSC-7 framing included. The only thing taken out along the way is
    the directory report, which goes to the tracker.
    """

    def __init__(
        self,
        render: Callable[[str], None],
        tracker: DirectoryTracker | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._render = render
        self.tracker = tracker or DirectoryTracker()
        self._scanner = EscapeScanner(ScanMode.RAW, max_pending=max_pending)

    def feed(self, chunk: str) -> str:
        """Forward one chunk. Returns the text handed to the renderer."""
        forwarded: list[str] = []
        for span in self._scanner.feed(chunk):
            if isinstance(span, Visible):
                forwarded.append(span.text)
                self._render(span.text)
            elif isinstance(span, Osc7):
                self.tracker.report(span.path)
        return "".join(forwarded)

    def reset(self) -> None:
        self._scanner.reset()
