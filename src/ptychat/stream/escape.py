"""Escape sequence scanning for PTY output.

The scanner is a small streaming state machine in the spirit of an
ANSI stripper: it walks the decoded text once, holds any control
sequence that is still in progress at a chunk boundary, and emits
tagged spans:

* :class:`Visible`: text for the consumer (what it contains depends on
  the :class:`ScanMode`)
* :class:`Osc7`: a normalized working-directory report

Three modes share the same machine:

* ``CHAT`` drops every control sequence.
* ``STYLED`` keeps SGR styling (``ESC [ ... m``) and drops the rest.
* ``RAW`` forwards every byte unmodified; OSC-7 reports are still
  extracted alongside.

A sequence that never terminates self-expires once it grows past
``max_pending`` characters: its introducer is flushed as literal text
and the remainder is rescanned.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

from ptychat.stream.osc7 import OSC7_PREFIX, parse_osc7_uri

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 1024

ESC = "\x1b"
BEL = "\x07"
ST = "\x9c"  # 8-bit String Terminator

# ESC plus the 8-bit C1 introducers (DCS, SOS, CSI, OSC, PM, APC)
_INTRODUCER_RE = re.compile("[\x1b\x90\x98\x9b\x9d\x9e\x9f]")

_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"  # CSI
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC
    r"|\x1b[PX^_][^\x1b]*\x1b\\"  # DCS / SOS / PM / APC
    r"|\x1b[ -/]*[0-~]"  # two-char and nF escapes
)

_SGR_RE = re.compile(r"\x1b\[[0-9;:]*m")


class ScanMode(enum.Enum):
    """What the scanner forwards as visible text."""

    CHAT = "chat"
    STYLED = "styled"
    RAW = "raw"


@dataclass(frozen=True)
class Visible:
    """A run of text to forward to the consumer."""

    text: str


@dataclass(frozen=True)
class Osc7:
    """A working-directory report, already normalized to a local path."""

    path: str


Span = Visible | Osc7


class _State(enum.IntEnum):
    GROUND = enum.auto()
    ESC = enum.auto()  # after ESC
    ESC_INTER = enum.auto()  # ESC + intermediate bytes (0x20-0x2F)
    CSI = enum.auto()  # ESC [ ...
    STRING = enum.auto()  # OSC / DCS / SOS / PM / APC body
    STRING_ESC = enum.auto()  # ESC inside a string body, maybe ST


class EscapeScanner:
    """Streaming splitter of terminal output into visible text and OSC-7 reports.

    Feed chunks in arrival order; the scanner is total over any input and
    never raises on malformed sequences.
    """

    def __init__(
        self,
        mode: ScanMode = ScanMode.CHAT,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        if max_pending < 2:
            raise ValueError("max_pending must be at least 2")
        self.mode = mode
        self.max_pending = max_pending
        self._state = _State.GROUND
        self._seq: list[str] = []
        self._is_osc = False
        self._body_start = 0

    @property
    def pending(self) -> bool:
        """True while a control sequence is held across a chunk boundary."""
        return self._state != _State.GROUND

    def reset(self) -> None:
        """Discard any sequence in progress."""
        self._state = _State.GROUND
        self._seq = []
        self._is_osc = False
        self._body_start = 0

    def feed(self, chunk: str) -> list[Span]:
        """Scan one chunk and return the spans it completes."""
        spans: list[Span] = []
        text: list[str] = []
        self._scan(chunk, text, spans)
        _flush_text(text, spans)
        return spans

    def _scan(self, data: str, text: list[str], spans: list[Span]) -> None:
        # Text handed back by the state machine (an aborted character, an
        # expired sequence) is scanned on its own before resuming ``data``.
        # It is never longer than ``max_pending``, so nesting stays shallow.
        i = 0
        n = len(data)
        while i < n:
            if self._state == _State.GROUND:
                m = _INTRODUCER_RE.search(data, i)
                end = m.start() if m else n
                if end > i:
                    text.append(data[i:end])
                if m is None:
                    break
                self._begin(data[end])
                i = end + 1
            else:
                ch = data[i]
                i += 1
                pushback = self._step(ch, text, spans)
                if pushback:
                    self._scan(pushback, text, spans)

            if len(self._seq) > self.max_pending:
                expired = "".join(self._seq)
                logger.debug(
                    "Escape sequence expired after %d chars, flushing as text",
                    len(expired),
                )
                self.reset()
                text.append(expired[0])
                self._scan(expired[1:], text, spans)

    # --- State machine ---

    def _begin(self, ch: str) -> None:
        self._seq = [ch]
        if ch == ESC:
            self._state = _State.ESC
        elif ch == "\x9b":
            self._state = _State.CSI
        else:
            self._state = _State.STRING
            self._is_osc = ch == "\x9d"
            self._body_start = 1

    def _step(self, ch: str, text: list[str], spans: list[Span]) -> str:
        """Advance by one character. Returns text to rescan, if any."""
        cp = ord(ch)
        state = self._state

        if state == _State.ESC:
            if ch == "[":
                self._seq.append(ch)
                self._state = _State.CSI
            elif ch == "]" or ch in "PX^_":
                self._seq.append(ch)
                self._state = _State.STRING
                self._is_osc = ch == "]"
                self._body_start = 2
            elif 0x20 <= cp <= 0x2F:
                self._seq.append(ch)
                self._state = _State.ESC_INTER
            elif 0x30 <= cp <= 0x7E:
                self._seq.append(ch)
                self._complete(text, spans)
            else:
                return self._abort(ch, text)

        elif state == _State.ESC_INTER:
            self._seq.append(ch)
            if 0x30 <= cp <= 0x7E:
                self._complete(text, spans)
            elif not 0x20 <= cp <= 0x2F:
                self._seq.pop()
                return self._abort(ch, text)

        elif state == _State.CSI:
            self._seq.append(ch)
            if 0x40 <= cp <= 0x7E:
                self._complete(text, spans)
            elif not 0x20 <= cp <= 0x3F:
                self._seq.pop()
                return self._abort(ch, text)

        elif state == _State.STRING:
            self._seq.append(ch)
            if ch == BEL or ch == ST:
                self._complete(text, spans, terminator_len=1)
            elif ch == ESC:
                self._state = _State.STRING_ESC

        elif state == _State.STRING_ESC:
            if ch == "\\":
                self._seq.append(ch)
                self._complete(text, spans, terminator_len=2)
            else:
                # A bare ESC ends the string; it also starts the next sequence
                self._seq.pop()
                self._complete(text, spans, terminator_len=0)
                return ESC + ch

        return ""

    def _complete(
        self, text: list[str], spans: list[Span], terminator_len: int = 0
    ) -> None:
        seq = "".join(self._seq)
        state = self._state
        is_osc = self._is_osc
        body_start = self._body_start
        self.reset()

        if self.mode == ScanMode.RAW:
            text.append(seq)
        elif (
            self.mode == ScanMode.STYLED
            and state == _State.CSI
            and _SGR_RE.fullmatch(seq)
        ):
            text.append(seq)

        if not is_osc:
            return

        body = seq[body_start : len(seq) - terminator_len]
        if body.startswith(OSC7_PREFIX):
            path = parse_osc7_uri(body[len(OSC7_PREFIX) :])
            if path is not None:
                _flush_text(text, spans)
                spans.append(Osc7(path))

    def _abort(self, ch: str, text: list[str]) -> str:
        """Give up on a malformed sequence and rescan ``ch`` from ground."""
        seq = "".join(self._seq)
        self.reset()
        if self.mode == ScanMode.RAW:
            text.append(seq)
        else:
            logger.debug("Dropping malformed escape sequence %r", seq)
        return ch


def _flush_text(text: list[str], spans: list[Span]) -> None:
    if not text:
        return
    joined = "".join(text)
    text.clear()
    if spans and isinstance(spans[-1], Visible):
        spans[-1] = Visible(spans[-1].text + joined)
    else:
        spans.append(Visible(joined))


def visible_text(spans: list[Span]) -> str:
    """Concatenate the visible text of a span list."""
    return "".join(s.text for s in spans if isinstance(s, Visible))


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)


def normalize_display(line: str, keep_styling: bool = False) -> str:
    """Normalize one line of terminal output for the chat view.

    Carriage returns overwrite the line (the last non-empty segment wins),
    control-only codes are removed, and SGR styling is kept only when
    ``keep_styling`` is set.
    """
    if "\r" in line:
        segments = [s for s in line.split("\r") if s]
        line = segments[-1] if segments else ""

    if not keep_styling:
        return sanitize_binary_output(strip_ansi(line)).replace("\r", "")

    out: list[str] = []
    pos = 0
    for m in _SGR_RE.finditer(line):
        out.append(sanitize_binary_output(strip_ansi(line[pos : m.start()])))
        out.append(m.group(0))
        pos = m.end()
    out.append(sanitize_binary_output(strip_ansi(line[pos:])))
    return "".join(out).replace("\r", "")


def strip_styling(line: str) -> str:
    """Remove SGR styling codes, leaving everything else as-is."""
    return _SGR_RE.sub("", line)
