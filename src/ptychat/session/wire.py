"""Wire protocol — decouples the chat pipeline from the UI.

Events flow from a session to the UI. The UI subscribes to the wire and
renders events. This lets the TUI and the plain CLI consume the same
session without either touching the message list directly.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ptychat.chat.message import MessageSnapshot

if TYPE_CHECKING:
    from ptychat.chat.aggregator import StateDelta


class EventType(enum.Enum):
    MESSAGE_APPENDED = "message_appended"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_CLOSED = "message_closed"
    MESSAGES_CLEARED = "messages_cleared"
    CWD_CHANGED = "cwd_changed"
    PTY_EXIT = "pty_exit"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: session -> UI subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_message(self, event_type: EventType, message: MessageSnapshot) -> None:
        self.send(WireEvent(type=event_type, data={"message": message}))

    def send_delta(self, delta: StateDelta) -> None:
        """Publish one pipeline step as wire events.

        Order: cleared, appended, updated, closed, cwd. A closed message
        is sent with its final snapshot.
        """
        if delta.cleared:
            self.send_cleared()
        for snap in delta.appended:
            self.send_message(EventType.MESSAGE_APPENDED, snap)
        for snap in delta.updated:
            self.send_message(EventType.MESSAGE_UPDATED, snap)
        if delta.closed:
            final = {s.id: s for s in (*delta.appended, *delta.updated)}
            for msg_id in delta.closed:
                snap = final.get(msg_id)
                if snap is not None:
                    self.send_message(EventType.MESSAGE_CLOSED, snap)
        if delta.cwd is not None:
            self.send_cwd(delta.cwd)

    def send_cleared(self) -> None:
        self.send(WireEvent(type=EventType.MESSAGES_CLEARED))

    def send_cwd(self, cwd: str) -> None:
        self.send(WireEvent(type=EventType.CWD_CHANGED, data={"cwd": cwd}))

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def send_pty_exit(
        self,
        session_id: str,
        title: str,
        exit_code: int | None,
        last_output: str = "",
    ) -> None:
        """Notify subscribers that a PTY session exited on its own."""
        self.send(
            WireEvent(
                type=EventType.PTY_EXIT,
                data={
                    "session_id": session_id,
                    "title": title,
                    "exit_code": exit_code,
                    "last_output": last_output[:500],
                },
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
