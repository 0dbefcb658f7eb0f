"""Chat pipeline — raw PTY chunks in, state deltas out.

    chunk ──► EscapeScanner ──► LineReassembler ──► classify ──► TurnAggregator
                  │
                  └──► DirectoryTracker (OSC-7)

The pipeline is a synchronous transform with no I/O and no locking.
Whoever pumps PTY output into ``feed`` must deliver chunks in order from
one place at a time (see :class:`ptychat.chat.session.ChatSession`).
"""

from __future__ import annotations

import logging

from ptychat.chat.aggregator import StateDelta, TurnAggregator, TurnState
from ptychat.chat.message import MessageSnapshot
from ptychat.session.directory import DirectoryTracker
from ptychat.stream.escape import DEFAULT_MAX_PENDING, EscapeScanner, Osc7, ScanMode
from ptychat.stream.events import DEFAULT_NOISE_MIN_LENGTH, RawText, classify
from ptychat.stream.lines import LineReassembler

logger = logging.getLogger(__name__)


class ChatPipeline:
    """Turns a PTY output stream into conversational turns."""

    def __init__(
        self,
        tracker: DirectoryTracker | None = None,
        keep_styling: bool = False,
        noise_min_length: int = DEFAULT_NOISE_MIN_LENGTH,
        suppress_echo: bool = True,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self.tracker = tracker or DirectoryTracker()
        self.keep_styling = keep_styling
        mode = ScanMode.STYLED if keep_styling else ScanMode.CHAT
        self._scanner = EscapeScanner(mode, max_pending=max_pending)
        self._lines = LineReassembler()
        self._aggregator = TurnAggregator(
            noise_min_length=noise_min_length,
            suppress_echo=suppress_echo,
        )

    # --- Views ---

    @property
    def messages(self) -> list[MessageSnapshot]:
        return self._aggregator.messages

    @property
    def state(self) -> TurnState:
        return self._aggregator.state

    @property
    def cwd(self) -> str:
        return self.tracker.cwd

    @property
    def tool_active(self) -> bool:
        return self._aggregator.tool_active

    @tool_active.setter
    def tool_active(self, active: bool) -> None:
        self._aggregator.tool_active = active

    # --- Input ---

    def feed(self, chunk: str) -> StateDelta:
        """Process one chunk of PTY output."""
        delta = StateDelta()
        for span in self._scanner.feed(chunk):
            if isinstance(span, Osc7):
                self.tracker.report(span.path)
                delta.cwd = span.path
                continue
            for line in self._lines.feed(span.text):
                delta.merge(self._route(line))
        return delta

    def _route(self, line: str) -> StateDelta:
        item = classify(line, keep_styling=self.keep_styling)
        if isinstance(item, RawText):
            return self._aggregator.on_raw_text(item.text)
        return self._aggregator.on_structured_event(item)

    def submit_user(self, text: str) -> StateDelta:
        return self._aggregator.submit_user(text)

    def clear(self) -> StateDelta:
        """Empty the conversation and reset every accumulator.

        The directory tracker is left alone.
        """
        self._scanner.reset()
        self._lines.reset()
        return self._aggregator.clear_session()

    def close(self) -> None:
        """Discard in-flight output. A partial line is never flushed."""
        self._scanner.reset()
        self._lines.reset()
        self._aggregator.discard_buffers()
