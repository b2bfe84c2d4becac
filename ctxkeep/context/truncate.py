"""Head-and-tail truncation of oversized message bodies"""

import re
from dataclasses import replace

from ctxkeep.session.message import (
    AssistantMessage,
    Message,
    ToolResultMessage,
    UserMessage,
)

ERROR_PATTERN = re.compile(r"^(Error:|❌)")

TOOL_HEAD_RATIO = 0.6
TOOL_TAIL_RATIO = 0.3
MESSAGE_HEAD_RATIO = 0.7
MESSAGE_TAIL_RATIO = 0.25


def _head_tail(content: str, max_length: int, head_ratio: float, tail_ratio: float) -> str:
    head = int(max_length * head_ratio)
    tail = int(max_length * tail_ratio)
    omitted = len(content) - head - tail
    tail_text = content[-tail:] if tail else ""
    return f"{content[:head]}\n\n... [{omitted} chars omitted] ...\n\n{tail_text}"


def truncate_tool_result(content: str, max_length: int) -> str:
    """Shorten a tool output, keeping its beginning and end.

    Error outputs are allowed up to 1.5x the limit before being cut.
    """
    if not content or len(content) <= max_length:
        return content
    if ERROR_PATTERN.match(content) and len(content) <= max_length * 1.5:
        return content
    return _head_tail(content, max_length, TOOL_HEAD_RATIO, TOOL_TAIL_RATIO)


def truncate_text(content: str, max_length: int) -> str:
    if not content or len(content) <= max_length:
        return content
    return _head_tail(content, max_length, MESSAGE_HEAD_RATIO, MESSAGE_TAIL_RATIO)


def _truncate_parts(parts: list, max_length: int) -> list:
    result = []
    for part in parts:
        if isinstance(part, dict) and part.get("type") == "text":
            part = {**part, "text": truncate_text(part.get("text", ""), max_length)}
        result.append(part)
    return result


def truncate_message(msg: Message, max_tool_chars: int, max_message_chars: int | None) -> Message:
    """Return a truncated copy of `msg`; `max_message_chars=None` leaves text bodies alone"""
    if isinstance(msg, ToolResultMessage):
        if msg.compacted_at is not None:
            return msg
        content = truncate_tool_result(msg.content, max_tool_chars)
        return msg if content is msg.content else replace(msg, content=content)
    if max_message_chars is None:
        return msg
    if isinstance(msg, UserMessage):
        if isinstance(msg.content, list):
            return replace(msg, content=_truncate_parts(msg.content, max_message_chars))
        content = truncate_text(msg.content, max_message_chars)
        return msg if content is msg.content else replace(msg, content=content)
    if isinstance(msg, AssistantMessage):
        content = truncate_text(msg.content, max_message_chars)
        return msg if content is msg.content else replace(msg, content=content)
    return msg


def truncate_log(
    messages: list[Message],
    max_tool_chars: int,
    max_message_chars: int,
    protected_from: int | None = None,
) -> list[Message]:
    """Truncate tool outputs everywhere and text bodies before `protected_from`.

    No message is removed, so every tool call keeps its result.
    """
    limit = len(messages) if protected_from is None else protected_from
    return [
        truncate_message(msg, max_tool_chars, max_message_chars if idx < limit else None)
        for idx, msg in enumerate(messages)
    ]
