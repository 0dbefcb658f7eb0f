"""Conversation message types for the chat view."""

from __future__ import annotations

import copy
import enum
import time
import uuid
from dataclasses import dataclass, field

from ptychat.stream.events import ToolBlock

# Shown in an assistant turn until its first content arrives
PLACEHOLDER = "..."


class Role(enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageClosedError(RuntimeError):
    """Raised when something tries to mutate a closed message."""


@dataclass(frozen=True)
class MessageSnapshot:
    """Read-only copy of a message handed to UI consumers."""

    id: str
    role: Role
    content: str
    blocks: tuple[ToolBlock, ...]
    is_streaming: bool
    timestamp: float


@dataclass
class Message:
    """One conversational turn.

    Content is kept as a list of pieces so streaming appends don't copy
    the whole text each time; reading ``content`` joins and compacts it.
    Once ``close()`` has been called the message is immutable.
    """

    role: Role
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)
    is_streaming: bool = False
    blocks: list[ToolBlock] = field(default_factory=list)
    placeholder: bool = False
    _parts: list[str] = field(default_factory=list, repr=False)

    @property
    def content(self) -> str:
        if len(self._parts) > 1:
            self._parts = ["".join(self._parts)]
        if not self._parts or not self._parts[0]:
            return PLACEHOLDER if self.placeholder else ""
        return self._parts[0]

    @property
    def is_user(self) -> bool:
        return self.role == Role.USER

    @property
    def is_assistant(self) -> bool:
        return self.role == Role.ASSISTANT

    # --- Mutation (streaming only) ---

    def _check_open(self) -> None:
        if not self.is_streaming:
            raise MessageClosedError(f"Message {self.id} is closed")

    def append(self, text: str) -> None:
        """Append streamed text, replacing the placeholder on first use."""
        self._check_open()
        if not text:
            return
        if self.placeholder:
            self.placeholder = False
            self._parts = []
        self._parts.append(text)

    def replace(self, text: str) -> None:
        """Replace the whole content (redraw-tolerant update)."""
        self._check_open()
        self.placeholder = False
        self._parts = [text]

    def add_block(self, block: ToolBlock) -> None:
        self._check_open()
        self.blocks.append(block)

    def close(self) -> None:
        """Stop streaming. Content is frozen from here on."""
        self.is_streaming = False

    def snapshot(self) -> MessageSnapshot:
        return MessageSnapshot(
            id=self.id,
            role=self.role,
            content=self.content,
            blocks=tuple(copy.deepcopy(self.blocks)),
            is_streaming=self.is_streaming,
            timestamp=self.timestamp,
        )

    # --- Convenience constructors ---

    @classmethod
    def user(cls, text: str, timestamp: float | None = None) -> Message:
        msg = cls(role=Role.USER, _parts=[text])
        if timestamp is not None:
            msg.timestamp = timestamp
        return msg

    @classmethod
    def assistant(
        cls, text: str = "", placeholder: bool = False, timestamp: float | None = None
    ) -> Message:
        """A new, open assistant turn."""
        msg = cls(
            role=Role.ASSISTANT,
            is_streaming=True,
            placeholder=placeholder and not text,
            _parts=[text] if text else [],
        )
        if timestamp is not None:
            msg.timestamp = timestamp
        return msg
