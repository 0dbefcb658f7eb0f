"""The interface the chat and terminal views need from a PTY."""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

# Receives decoded output chunks in arrival order
OutputListener = Callable[[str], None]


@runtime_checkable
class TerminalProcess(Protocol):
    """A process running behind a pseudo-terminal.

    Output is delivered to subscribed listeners as text chunks with no
    line-boundary guarantees, strictly in arrival order.
    """

    id: str

    async def open(self, cols: int, rows: int) -> None: ...

    def write(self, data: str | bytes) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def close(self) -> None: ...

    def subscribe(self, listener: OutputListener) -> None: ...

    def unsubscribe(self, listener: OutputListener) -> None: ...

    @property
    def alive(self) -> bool: ...
