"""Directory tracker — the shell's current working directory."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

DirectoryListener = Callable[[str], None]


class DirectoryTracker:
    """Holds the last working directory reported by the shell.

    The value is written only by the output pipeline (from OSC-7 reports)
    and read by anything that needs it: a tree browser, a prompt display.
    Reads are safe from any thread.
    """

    def __init__(self, initial: str = "") -> None:
        self._cwd = initial
        self._lock = threading.Lock()
        self._listeners: list[DirectoryListener] = []

    @property
    def cwd(self) -> str:
        """Current directory, or ``""`` while unknown."""
        with self._lock:
            return self._cwd

    def report(self, path: str) -> bool:
        """Overwrite the tracked directory.

        No validation is done; the shell is the authority. Listeners are
        notified only when the value actually changes.

        Returns:
            True if the value changed.
        """
        with self._lock:
            changed = path != self._cwd
            self._cwd = path
            listeners = list(self._listeners)

        if changed:
            logger.debug("Working directory is now %s", path)
            for listener in listeners:
                try:
                    listener(path)
                except Exception:
                    logger.exception("Error in directory listener")
        return changed

    def subscribe(self, listener: DirectoryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: DirectoryListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
