"""Line classification: structured JSON events vs. raw terminal text.

Agent CLIs running in stream-JSON mode print one JSON object per line.
Recognized shapes (field names vary slightly between tools)::

    {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi"}]}}
    {"type": "message", "role": "assistant", "content": "Hi"}
    {"type": "result", ...}

Anything that is not a JSON object is raw text. JSON objects of any other
shape are classified as :class:`UnrecognizedEvent` and ignored downstream.
Parsing is defensive: every field is checked with ``.get`` and
``isinstance`` instead of assuming a schema.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from ptychat.stream.escape import normalize_display, strip_styling

logger = logging.getLogger(__name__)

DEFAULT_NOISE_MIN_LENGTH = 5

# Lines that are nothing but a shell or agent prompt
PROMPT_ECHOES = frozenset({">", "$", "#", "%", "❯", "›"})


@dataclass
class TextBlock:
    """A text fragment of an assistant event."""

    type: Literal["text"] = "text"
    text: str = ""


@dataclass
class ToolBlock:
    """An opaque non-text block (tool invocation, thinking, ...)."""

    type: str = "tool_use"
    name: str = ""
    input: Any = None
    id: str = ""


ContentBlock = TextBlock | ToolBlock


@dataclass
class AssistantEvent:
    """A message/assistant event carrying content blocks."""

    blocks: list[ContentBlock] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def tool_blocks(self) -> list[ToolBlock]:
        return [b for b in self.blocks if isinstance(b, ToolBlock)]


@dataclass
class ResultEvent:
    """End of the current assistant turn."""

    is_error: bool = False
    result: str = ""


@dataclass
class UnrecognizedEvent:
    """A JSON object of a shape we don't handle."""

    payload: dict[str, Any] = field(default_factory=dict)


StructuredEvent = AssistantEvent | ResultEvent | UnrecognizedEvent


@dataclass
class RawText:
    """A line that is not a structured event, normalized for display."""

    text: str = ""


def classify(line: str, keep_styling: bool = False) -> StructuredEvent | RawText:
    """Classify one complete line of output."""
    candidate = strip_styling(line).strip()
    if candidate.startswith("{"):
        try:
            obj = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            obj = None
        if isinstance(obj, dict):
            return parse_event(obj)
        logger.debug("Line looks like JSON but is not an object: %r", candidate[:200])

    return RawText(text=normalize_display(line, keep_styling=keep_styling))


def parse_event(obj: dict[str, Any]) -> StructuredEvent:
    """Build a structured event from a decoded JSON object."""
    etype = obj.get("type")

    if etype in ("assistant", "message"):
        role = obj.get("role")
        if role is not None and role != "assistant":
            return UnrecognizedEvent(payload=obj)
        return AssistantEvent(blocks=_parse_blocks(_content_of(obj)))

    if etype == "result":
        result = obj.get("result")
        return ResultEvent(
            is_error=bool(obj.get("is_error", False)),
            result=result if isinstance(result, str) else "",
        )

    logger.debug("Ignoring structured event of type %r", etype)
    return UnrecognizedEvent(payload=obj)


def _content_of(obj: dict[str, Any]) -> Any:
    message = obj.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if content is not None:
            return content
    elif isinstance(message, (list, str)):
        return message
    return obj.get("content")


def _parse_blocks(content: Any) -> list[ContentBlock]:
    if isinstance(content, str):
        return [TextBlock(text=content)] if content else []
    if not isinstance(content, list):
        return []

    blocks: list[ContentBlock] = []
    for item in content:
        if isinstance(item, str):
            if item:
                blocks.append(TextBlock(text=item))
            continue
        if not isinstance(item, dict):
            continue

        btype = item.get("type")
        if btype == "text":
            text = item.get("text")
            if isinstance(text, str) and text:
                blocks.append(TextBlock(text=text))
            continue

        btype = btype if isinstance(btype, str) and btype else "tool_use"
        name = item.get("name")
        block_id = item.get("id")
        blocks.append(
            ToolBlock(
                type=btype,
                name=name if isinstance(name, str) and name else btype,
                input=item.get("input"),
                id=block_id if isinstance(block_id, str) else "",
            )
        )
    return blocks


def is_prompt_noise(text: str, min_length: int = DEFAULT_NOISE_MIN_LENGTH) -> bool:
    """True for terminal chrome: a lone prompt echo or a very short line."""
    stripped = text.strip()
    return stripped in PROMPT_ECHOES or len(stripped) < min_length
