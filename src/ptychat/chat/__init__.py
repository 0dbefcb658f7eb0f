"""Chat view model — conversational turns built from PTY output."""

from ptychat.chat.message import (
    PLACEHOLDER,
    Message,
    MessageClosedError,
    MessageSnapshot,
    Role,
)
from ptychat.chat.aggregator import StateDelta, TurnAggregator, TurnState
from ptychat.chat.pipeline import ChatPipeline

__all__ = [
    "PLACEHOLDER",
    "Role",
    "Message",
    "MessageSnapshot",
    "MessageClosedError",
    "TurnState",
    "StateDelta",
    "TurnAggregator",
    "ChatPipeline",
]
