"""Turn aggregation — the conversational state machine.

Classified output is merged into an ordered, append-only message list:

* ``submit_user`` closes any open assistant turn, appends the user
  message and opens a fresh assistant turn with placeholder content.
* Structured events append text and tool blocks to the open turn; a
  ``result`` event closes it.
* Raw text accumulates in the session output buffer, and the open
  turn's content is replaced with the full buffer on every line, so
  that redraw-style output which retransmits a line stays correct.
* Raw output with no open turn is unsolicited (a startup banner, an
  async notification) and opens a new assistant turn.

Invariants: at most one message is streaming and it is always the last
one; user messages never stream; messages are never reordered or
removed except by ``clear_session``.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field

from ptychat.chat.message import Message, MessageSnapshot
from ptychat.stream.events import (
    DEFAULT_NOISE_MIN_LENGTH,
    AssistantEvent,
    ResultEvent,
    StructuredEvent,
    TextBlock,
    UnrecognizedEvent,
    is_prompt_noise,
)

logger = logging.getLogger(__name__)

_LEADING_PROMPT_RE = re.compile(r"^> ")
_ECHO_PROMPT_RE = re.compile(r"^[>$#%❯›]\s*")


class TurnState(enum.Enum):
    # A user message is always followed by its open assistant turn, so
    # there is no observable state in which the user message is last.
    IDLE = "idle"
    ASSISTANT_STREAMING = "assistant_streaming"


@dataclass
class SessionState:
    """All mutable per-session state owned by the aggregator."""

    messages: list[Message] = field(default_factory=list)
    # Session output buffer: raw lines of the current freeform turn
    output_lines: list[str] = field(default_factory=list)
    # Turn mode flag: the current turn is built from structured events
    structured_turn: bool = False
    tool_active: bool = False
    pending_echo: str | None = None
    last_timestamp: float = 0.0


@dataclass
class StateDelta:
    """What changed in one step of the pipeline.

    Snapshots are the latest state of each touched message. ``cleared``
    means the list was emptied before the other changes were applied.
    """

    appended: list[MessageSnapshot] = field(default_factory=list)
    updated: list[MessageSnapshot] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    cleared: bool = False
    cwd: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.appended
            or self.updated
            or self.closed
            or self.cleared
            or self.cwd is not None
        )

    def record_appended(self, msg: Message) -> None:
        self.appended.append(msg.snapshot())

    def record_updated(self, msg: Message) -> None:
        self._replace_or_add(msg.snapshot())

    def record_closed(self, msg: Message) -> None:
        self.record_updated(msg)
        if msg.id not in self.closed:
            self.closed.append(msg.id)

    def merge(self, later: StateDelta) -> StateDelta:
        """Fold a later delta into this one (in place) and return self."""
        if later.cleared:
            self.appended = []
            self.updated = []
            self.closed = []
            self.cleared = True
        for snap in later.appended:
            self.appended.append(snap)
        for snap in later.updated:
            self._replace_or_add(snap)
        for msg_id in later.closed:
            if msg_id not in self.closed:
                self.closed.append(msg_id)
        if later.cwd is not None:
            self.cwd = later.cwd
        return self

    def _replace_or_add(self, snap: MessageSnapshot) -> None:
        for bucket in (self.appended, self.updated):
            for i, existing in enumerate(bucket):
                if existing.id == snap.id:
                    bucket[i] = snap
                    return
        self.updated.append(snap)


class TurnAggregator:
    """Owns the message list and merges classified output into turns."""

    def __init__(
        self,
        noise_min_length: int = DEFAULT_NOISE_MIN_LENGTH,
        suppress_echo: bool = True,
    ) -> None:
        self.noise_min_length = noise_min_length
        self.suppress_echo = suppress_echo
        self._state = SessionState()

    # --- Read-only views ---

    @property
    def messages(self) -> list[MessageSnapshot]:
        return [m.snapshot() for m in self._state.messages]

    @property
    def state(self) -> TurnState:
        if not self._state.messages:
            return TurnState.IDLE
        last = self._state.messages[-1]
        if last.is_streaming:
            return TurnState.ASSISTANT_STREAMING
        return TurnState.IDLE

    @property
    def structured_turn(self) -> bool:
        return self._state.structured_turn

    @property
    def tool_active(self) -> bool:
        return self._state.tool_active

    @tool_active.setter
    def tool_active(self, active: bool) -> None:
        self._state.tool_active = active

    @property
    def output_buffer(self) -> str:
        return "\n".join(self._state.output_lines)

    # --- Transitions ---

    def submit_user(self, text: str) -> StateDelta:
        delta = StateDelta()
        self._close_open(delta)

        user = Message.user(text, timestamp=self._now())
        self._state.messages.append(user)
        delta.record_appended(user)

        self._state.output_lines = []
        self._state.structured_turn = False
        self._state.pending_echo = text.strip() if self.suppress_echo else None

        self._open_assistant(delta, placeholder=True)
        return delta

    def on_structured_event(self, event: StructuredEvent) -> StateDelta:
        delta = StateDelta()
        if isinstance(event, UnrecognizedEvent):
            return delta

        first_structured = not self._state.structured_turn
        self._state.structured_turn = True
        self._state.pending_echo = None
        msg = self._open_message()

        if isinstance(event, ResultEvent):
            if msg is not None:
                msg.close()
                delta.record_closed(msg)
            # The turn is over; later output is unsolicited
            self._state.structured_turn = False
            self._state.output_lines = []
            return delta

        if not isinstance(event, AssistantEvent) or not event.blocks:
            return delta

        if msg is None:
            msg = self._open_assistant(delta)
        elif first_structured and not msg.placeholder and msg.content:
            # Freeform text seen earlier in this turn is not rendered
            msg.replace("")
            msg.placeholder = True

        for block in event.blocks:
            if isinstance(block, TextBlock):
                msg.append(block.text)
            else:
                msg.add_block(block)
        delta.record_updated(msg)
        return delta

    def on_raw_text(self, text: str) -> StateDelta:
        delta = StateDelta()
        state = self._state
        if state.structured_turn:
            return delta

        if self._is_echo(text):
            return delta

        if state.tool_active and is_prompt_noise(text, self.noise_min_length):
            return delta

        msg = self._open_message()
        if msg is None:
            content = _clean_content(text)
            if not content:
                return delta
            state.output_lines = [text]
            self._open_assistant(delta, text=content)
            return delta

        state.output_lines.append(text)
        content = _clean_content("\n".join(state.output_lines))
        if content and (msg.placeholder or content != msg.content):
            msg.replace(content)
            delta.record_updated(msg)
        return delta

    def clear_session(self) -> StateDelta:
        tool_active = self._state.tool_active
        self._state = SessionState(tool_active=tool_active)
        return StateDelta(cleared=True)

    def discard_buffers(self) -> None:
        """Drop the output buffer without touching messages."""
        self._state.output_lines = []
        self._state.pending_echo = None

    # --- Helpers ---

    def _open_message(self) -> Message | None:
        messages = self._state.messages
        if messages and messages[-1].is_streaming:
            return messages[-1]
        return None

    def _open_assistant(
        self, delta: StateDelta, text: str = "", placeholder: bool = False
    ) -> Message:
        msg = Message.assistant(text, placeholder=placeholder, timestamp=self._now())
        self._state.messages.append(msg)
        delta.record_appended(msg)
        return msg

    def _close_open(self, delta: StateDelta) -> None:
        msg = self._open_message()
        if msg is not None:
            msg.close()
            delta.record_closed(msg)

    def _is_echo(self, text: str) -> bool:
        """Consume the terminal's echo of the last submitted input."""
        echo = self._state.pending_echo
        if echo is None:
            return False
        stripped = text.strip()
        if not stripped:
            return False
        self._state.pending_echo = None
        return stripped == echo or _ECHO_PROMPT_RE.sub("", stripped) == echo

    def _now(self) -> float:
        ts = max(time.time(), self._state.last_timestamp + 1e-6)
        self._state.last_timestamp = ts
        return ts


def _clean_content(text: str) -> str:
    return _LEADING_PROMPT_RE.sub("", text).lstrip()
