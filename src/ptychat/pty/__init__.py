"""PTY process management — managed pseudo-terminal sessions.

The shell or agent CLI behind each view runs in a managed PTY session
with process group isolation, ordered output delivery, a rolling output
buffer, and automatic cleanup.
"""

from ptychat.pty.base import OutputListener, TerminalProcess
from ptychat.pty.buffer import RollingBuffer
from ptychat.pty.manager import PTYManager
from ptychat.pty.session import PTYOpenError, PTYSession, PTYStatus

__all__ = [
    "OutputListener",
    "TerminalProcess",
    "PTYSession",
    "PTYStatus",
    "PTYOpenError",
    "PTYManager",
    "RollingBuffer",
]
