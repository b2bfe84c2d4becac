"""Message models for thread conversation logs"""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal, Union

COMPACTED_PLACEHOLDER = "[Old tool result content cleared]"

ToolStatus = Literal["pending", "success", "error", "rejected"]
CheckpointType = Literal["user_message", "tool_edit", "session_start"]
Content = Union[str, list[dict]]


def new_message_id() -> str:
    return uuid.uuid4().hex


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class ToolCall:
    """A tool call emitted by the assistant"""
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    status: ToolStatus = "success"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCall":
        args = data.get("arguments", {})
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError:
                args = {}
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=args if isinstance(args, dict) else {},
            status=data.get("status", "success"),
        )


@dataclass
class UserMessage:
    content: Content
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    role: Literal["user"] = field(default="user", init=False)


@dataclass
class AssistantMessage:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    compacted_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    role: Literal["assistant"] = field(default="assistant", init=False)


@dataclass
class ToolResultMessage:
    tool_call_id: str
    name: str
    content: str
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    compacted_at: datetime | None = None
    role: Literal["tool"] = field(default="tool", init=False)


@dataclass
class CheckpointMessage:
    """UI/undo marker; never sent to the model"""
    type: CheckpointType = "user_message"
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    role: Literal["checkpoint"] = field(default="checkpoint", init=False)


@dataclass
class InterruptedToolMessage:
    name: str
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    role: Literal["interrupted_tool"] = field(default="interrupted_tool", init=False)


Message = Union[
    UserMessage,
    AssistantMessage,
    ToolResultMessage,
    CheckpointMessage,
    InterruptedToolMessage,
]


def content_text(content: Content | None) -> str:
    """Flatten string or part-list content to plain text"""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text":
            parts.append(item.get("text", ""))
        elif isinstance(item, str):
            parts.append(item)
    return " ".join(parts)


def message_text(msg: Message) -> str:
    if isinstance(msg, (UserMessage, AssistantMessage)):
        return content_text(msg.content)
    if isinstance(msg, ToolResultMessage):
        return COMPACTED_PLACEHOLDER if msg.compacted_at else msg.content
    return ""


def mark_compacted(msg: ToolResultMessage, when: datetime) -> ToolResultMessage:
    """Return a compacted copy; already compacted messages are returned unchanged"""
    if msg.compacted_at is not None:
        return msg
    return replace(msg, compacted_at=when)


def message_to_dict(msg: Message) -> dict:
    """Serialize a message for storage"""
    data: dict[str, Any] = {
        "id": msg.id,
        "role": msg.role,
        "timestamp": msg.timestamp.isoformat(),
    }
    if isinstance(msg, UserMessage):
        data["content"] = msg.content
    elif isinstance(msg, AssistantMessage):
        data["content"] = msg.content
        if msg.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in msg.tool_calls]
        if msg.compacted_at:
            data["compacted_at"] = _format_time(msg.compacted_at)
        if msg.metadata:
            data["metadata"] = msg.metadata
    elif isinstance(msg, ToolResultMessage):
        data["tool_call_id"] = msg.tool_call_id
        data["name"] = msg.name
        data["content"] = msg.content
        if msg.compacted_at:
            data["compacted_at"] = _format_time(msg.compacted_at)
    elif isinstance(msg, CheckpointMessage):
        data["type"] = msg.type
    elif isinstance(msg, InterruptedToolMessage):
        data["name"] = msg.name
    return data


def message_from_dict(data: dict) -> Message:
    """Create a message from its stored form, dispatching on role"""
    role = data.get("role")
    common = {
        "id": data.get("id") or new_message_id(),
        "timestamp": _parse_time(data.get("timestamp")) or datetime.now(),
    }
    if role == "user":
        return UserMessage(content=data.get("content", ""), **common)
    if role == "assistant":
        return AssistantMessage(
            content=data.get("content") or "",
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            compacted_at=_parse_time(data.get("compacted_at")),
            metadata=data.get("metadata", {}),
            **common,
        )
    if role == "tool":
        return ToolResultMessage(
            tool_call_id=data["tool_call_id"],
            name=data.get("name", ""),
            content=data.get("content") or "",
            compacted_at=_parse_time(data.get("compacted_at")),
            **common,
        )
    if role == "checkpoint":
        return CheckpointMessage(type=data.get("type", "user_message"), **common)
    if role == "interrupted_tool":
        return InterruptedToolMessage(name=data.get("name", ""), **common)
    raise ValueError(f"Unknown message role: {role}")


def to_wire_messages(messages: list[Message]) -> list[dict]:
    """Convert a log to chat-completion messages for the model.

    Checkpoint and interrupted markers are skipped. Tool calls without a later
    result are dropped from their assistant message, and tool results whose call
    is not present earlier in the list are dropped as orphans.
    """
    result_index: dict[str, tuple[int, ToolResultMessage]] = {}
    for idx, msg in enumerate(messages):
        if isinstance(msg, ToolResultMessage):
            result_index.setdefault(msg.tool_call_id, (idx, msg))

    wire: list[dict] = []
    for idx, msg in enumerate(messages):
        if isinstance(msg, UserMessage):
            wire.append({"role": "user", "content": msg.content})
        elif isinstance(msg, AssistantMessage):
            valid_calls = [
                tc for tc in msg.tool_calls
                if tc.id in result_index and result_index[tc.id][0] > idx
            ]
            if valid_calls:
                wire.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in valid_calls
                    ],
                })
                for tc in valid_calls:
                    tool_msg = result_index[tc.id][1]
                    wire.append({
                        "role": "tool",
                        "tool_call_id": tc.id,
                        "name": tool_msg.name,
                        "content": message_text(tool_msg),
                    })
            elif msg.content:
                wire.append({"role": "assistant", "content": msg.content})
        # Tool results are emitted next to their call; orphans fall through here
    return wire


def sendable_messages(messages: list[Message]) -> list[Message]:
    """Drop markers and orphaned tool results, keeping everything else in order"""
    called: set[str] = set()
    result: list[Message] = []
    for msg in messages:
        if isinstance(msg, (CheckpointMessage, InterruptedToolMessage)):
            continue
        if isinstance(msg, AssistantMessage):
            called.update(tc.id for tc in msg.tool_calls)
        elif isinstance(msg, ToolResultMessage) and msg.tool_call_id not in called:
            continue
        result.append(msg)
    return result
