"""Stream interpretation — PTY output chunks to visible text and events.

The scanner separates printable text from control sequences (and pulls
out OSC-7 directory reports), the reassembler cuts text into lines, and
the classifier tells structured JSON events apart from free-form output.
"""

from ptychat.stream.escape import (
    EscapeScanner,
    Osc7,
    ScanMode,
    Visible,
    normalize_display,
    sanitize_binary_output,
    strip_ansi,
)
from ptychat.stream.events import (
    AssistantEvent,
    RawText,
    ResultEvent,
    TextBlock,
    ToolBlock,
    UnrecognizedEvent,
    classify,
    is_prompt_noise,
)
from ptychat.stream.lines import LineReassembler
from ptychat.stream.osc7 import parse_osc7_uri

__all__ = [
    "EscapeScanner",
    "ScanMode",
    "Visible",
    "Osc7",
    "strip_ansi",
    "sanitize_binary_output",
    "normalize_display",
    "parse_osc7_uri",
    "LineReassembler",
    "TextBlock",
    "ToolBlock",
    "AssistantEvent",
    "ResultEvent",
    "UnrecognizedEvent",
    "RawText",
    "classify",
    "is_prompt_noise",
]
