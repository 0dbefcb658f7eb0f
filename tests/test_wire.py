"""Tests for ptychat.session.wire (Wire, WireEvent, EventType)."""

from __future__ import annotations

import asyncio

from ptychat.chat.aggregator import StateDelta
from ptychat.chat.message import Message
from ptychat.session.wire import EventType, Wire, WireEvent


def _drain(q: asyncio.Queue) -> list[WireEvent | None]:
    events = []
    while not q.empty():
        events.append(q.get_nowait())
    return events


# ---------------------------------------------------------------------------
# EventType
# ---------------------------------------------------------------------------


class TestEventType:
    def test_all_variants_exist(self) -> None:
        expected = {
            "MESSAGE_APPENDED",
            "MESSAGE_UPDATED",
            "MESSAGE_CLOSED",
            "MESSAGES_CLEARED",
            "CWD_CHANGED",
            "PTY_EXIT",
            "ERROR",
            "STATUS",
        }
        actual = {e.name for e in EventType}
        assert actual == expected

    def test_values_are_lowercase(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower()


# ---------------------------------------------------------------------------
# WireEvent
# ---------------------------------------------------------------------------


class TestWireEvent:
    def test_defaults(self) -> None:
        event = WireEvent(type=EventType.STATUS)
        assert event.data == {}

    def test_with_data(self) -> None:
        event = WireEvent(type=EventType.CWD_CHANGED, data={"cwd": "/tmp"})
        assert event.data["cwd"] == "/tmp"


# ---------------------------------------------------------------------------
# Wire: basic send/subscribe
# ---------------------------------------------------------------------------


class TestWire:
    def test_send_to_subscriber(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send(WireEvent(type=EventType.STATUS, data={"message": "hi"}))
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.STATUS
        assert event.data["message"] == "hi"

    def test_send_to_multiple_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.send_cwd("/srv")
        e1 = q1.get_nowait()
        e2 = q2.get_nowait()
        assert e1 is not None and e2 is not None
        assert e1.type == e2.type == EventType.CWD_CHANGED

    def test_unsubscribe(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.unsubscribe(q)
        wire.send_status("x")
        assert q.empty()

    def test_unsubscribe_nonexistent_is_safe(self) -> None:
        wire = Wire()
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        wire.unsubscribe(q)  # Should not raise


# ---------------------------------------------------------------------------
# Wire: closed-state guard
# ---------------------------------------------------------------------------


class TestWireClosedGuard:
    def test_close_sends_sentinel_to_all_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.close()
        assert wire.closed
        assert q1.get_nowait() is None
        assert q2.get_nowait() is None

    def test_sends_after_close_dropped(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        q.get_nowait()  # drain sentinel
        wire.send_status("nope")
        wire.send_error("nope")
        wire.send_cwd("/nope")
        wire.send_cleared()
        wire.send_pty_exit("s", "t", 0)
        wire.send_delta(StateDelta(cleared=True))
        assert q.empty()


# ---------------------------------------------------------------------------
# Wire: convenience methods
# ---------------------------------------------------------------------------


class TestWireConvenience:
    def test_send_error(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_error("something failed")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.ERROR
        assert event.data["error"] == "something failed"

    def test_send_pty_exit(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_pty_exit("pty_001", "chat", exit_code=0, last_output="done")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.PTY_EXIT
        assert event.data["session_id"] == "pty_001"
        assert event.data["exit_code"] == 0
        assert event.data["last_output"] == "done"

    def test_send_pty_exit_truncates_output(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_pty_exit("pty_002", "test", exit_code=1, last_output="x" * 1000)
        event = q.get_nowait()
        assert event is not None
        assert len(event.data["last_output"]) == 500


# ---------------------------------------------------------------------------
# Wire: state deltas
# ---------------------------------------------------------------------------


class TestSendDelta:
    def test_order(self) -> None:
        wire = Wire()
        q = wire.subscribe()

        old = Message.assistant("old")
        old.close()
        new = Message.assistant(placeholder=True)
        delta = StateDelta(cleared=True, cwd="/work")
        delta.record_appended(new)
        delta.record_closed(old)

        wire.send_delta(delta)
        types = [e.type for e in _drain(q) if e is not None]
        assert types == [
            EventType.MESSAGES_CLEARED,
            EventType.MESSAGE_APPENDED,
            EventType.MESSAGE_UPDATED,
            EventType.MESSAGE_CLOSED,
            EventType.CWD_CHANGED,
        ]

    def test_closed_carries_final_snapshot(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        msg = Message.assistant("final")
        msg.close()
        delta = StateDelta()
        delta.record_closed(msg)

        wire.send_delta(delta)
        closed = [e for e in _drain(q) if e and e.type == EventType.MESSAGE_CLOSED]
        assert len(closed) == 1
        snap = closed[0].data["message"]
        assert snap.id == msg.id
        assert snap.content == "final"
        assert not snap.is_streaming

    def test_empty_delta_sends_nothing(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_delta(StateDelta())
        assert q.empty()
