"""Tests for ptychat.chat.message."""

from __future__ import annotations

import dataclasses

import pytest

from ptychat.chat.message import (
    PLACEHOLDER,
    Message,
    MessageClosedError,
    Role,
)
from ptychat.stream.events import ToolBlock


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


class TestConstructors:
    def test_user(self) -> None:
        m = Message.user("hello")
        assert m.role == Role.USER
        assert m.is_user
        assert m.content == "hello"
        assert not m.is_streaming

    def test_assistant_placeholder(self) -> None:
        m = Message.assistant(placeholder=True)
        assert m.is_assistant
        assert m.is_streaming
        assert m.content == PLACEHOLDER

    def test_assistant_seeded(self) -> None:
        m = Message.assistant("banner", placeholder=True)
        assert m.content == "banner"
        assert not m.placeholder

    def test_assistant_empty(self) -> None:
        assert Message.assistant().content == ""

    def test_explicit_timestamp(self) -> None:
        assert Message.user("x", timestamp=12.5).timestamp == 12.5

    def test_ids_unique(self) -> None:
        assert Message.user("a").id != Message.user("a").id


# ---------------------------------------------------------------------------
# Streaming mutation
# ---------------------------------------------------------------------------


class TestStreaming:
    def test_append_replaces_placeholder(self) -> None:
        m = Message.assistant(placeholder=True)
        m.append("Hel")
        m.append("lo")
        assert m.content == "Hello"
        assert not m.placeholder

    def test_append_empty_keeps_placeholder(self) -> None:
        m = Message.assistant(placeholder=True)
        m.append("")
        assert m.content == PLACEHOLDER

    def test_replace(self) -> None:
        m = Message.assistant("old")
        m.replace("new")
        assert m.content == "new"

    def test_add_block(self) -> None:
        m = Message.assistant()
        m.add_block(ToolBlock(name="Bash", input={"command": "ls"}))
        assert [b.name for b in m.blocks] == ["Bash"]

    def test_content_read_is_stable(self) -> None:
        m = Message.assistant()
        for piece in ("a", "b", "c"):
            m.append(piece)
        assert m.content == "abc"
        assert m.content == "abc"


# ---------------------------------------------------------------------------
# Closed messages
# ---------------------------------------------------------------------------


class TestClosed:
    def test_close_keeps_content(self) -> None:
        m = Message.assistant("done")
        m.close()
        assert not m.is_streaming
        assert m.content == "done"

    def test_append_after_close(self) -> None:
        m = Message.assistant("x")
        m.close()
        with pytest.raises(MessageClosedError):
            m.append("more")

    def test_replace_after_close(self) -> None:
        m = Message.assistant("x")
        m.close()
        with pytest.raises(MessageClosedError):
            m.replace("y")

    def test_add_block_after_close(self) -> None:
        m = Message.assistant()
        m.close()
        with pytest.raises(MessageClosedError):
            m.add_block(ToolBlock(name="Read"))

    def test_user_message_is_closed(self) -> None:
        with pytest.raises(MessageClosedError):
            Message.user("hi").append("!")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshot:
    def test_fields(self) -> None:
        m = Message.assistant(placeholder=True)
        snap = m.snapshot()
        assert snap.id == m.id
        assert snap.role == Role.ASSISTANT
        assert snap.content == PLACEHOLDER
        assert snap.is_streaming
        assert snap.blocks == ()

    def test_frozen(self) -> None:
        snap = Message.user("hi").snapshot()
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.content = "changed"  # type: ignore[misc]

    def test_not_affected_by_later_changes(self) -> None:
        m = Message.assistant("a")
        m.add_block(ToolBlock(name="Read", input={"path": "x"}))
        snap = m.snapshot()
        m.append("b")
        m.blocks[0].input["path"] = "y"
        assert snap.content == "a"
        assert snap.blocks[0].input == {"path": "x"}
