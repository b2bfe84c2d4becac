"""Token estimation.

Uses a simple heuristic: ~4 characters per token. Non-text parts (images) count
a fixed amount regardless of size.
"""

import json

from ctxkeep.session.message import (
    AssistantMessage,
    Message,
    ToolResultMessage,
    UserMessage,
    message_text,
)

MESSAGE_OVERHEAD = 4
TOOL_CALL_OVERHEAD = 10
IMAGE_TOKENS = 1600


def estimate_tokens(text: str | None) -> int:
    """Estimate token count for a string, rounding half up"""
    if not text:
        return 0
    return int(len(text) / 4 + 0.5)


def estimate_content(content) -> int:
    if not content:
        return 0
    if isinstance(content, str):
        return estimate_tokens(content)
    total = 0
    for part in content:
        if isinstance(part, str):
            total += estimate_tokens(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            total += estimate_tokens(part.get("text", ""))
        else:
            total += IMAGE_TOKENS
    return total


def estimate_message(msg: Message) -> int:
    """Estimate token count for one log message; markers count zero"""
    if isinstance(msg, UserMessage):
        return MESSAGE_OVERHEAD + estimate_content(msg.content)
    if isinstance(msg, AssistantMessage):
        tokens = MESSAGE_OVERHEAD + estimate_tokens(msg.content)
        for tc in msg.tool_calls:
            tokens += TOOL_CALL_OVERHEAD
            tokens += estimate_tokens(tc.name)
            tokens += estimate_tokens(json.dumps(tc.arguments, default=str))
        return tokens
    if isinstance(msg, ToolResultMessage):
        return MESSAGE_OVERHEAD + estimate_tokens(message_text(msg))
    return 0


def estimate_log(messages: list[Message]) -> int:
    return sum(estimate_message(m) for m in messages)


def estimate_wire(messages: list[dict]) -> int:
    """Estimate already-converted chat messages"""
    total = 0
    for msg in messages:
        total += MESSAGE_OVERHEAD + estimate_content(msg.get("content"))
        for tc in msg.get("tool_calls") or []:
            fn = tc.get("function", {})
            total += TOOL_CALL_OVERHEAD
            total += estimate_tokens(fn.get("name", ""))
            total += estimate_tokens(fn.get("arguments", ""))
    return total
