from .message import (
    AssistantMessage,
    CheckpointMessage,
    InterruptedToolMessage,
    Message,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    message_from_dict,
    message_to_dict,
    to_wire_messages,
)
from .summary import (
    DecisionPoint,
    ErrorFix,
    FileChangeRecord,
    HandoffDocument,
    KeyFileSnapshot,
    StructuredSummary,
    merge_summaries,
)
from .thread import Thread, ThreadLocks, ThreadStore

__all__ = [
    "AssistantMessage",
    "CheckpointMessage",
    "InterruptedToolMessage",
    "Message",
    "ToolCall",
    "ToolResultMessage",
    "UserMessage",
    "message_from_dict",
    "message_to_dict",
    "to_wire_messages",
    "DecisionPoint",
    "ErrorFix",
    "FileChangeRecord",
    "HandoffDocument",
    "KeyFileSnapshot",
    "StructuredSummary",
    "merge_summaries",
    "Thread",
    "ThreadLocks",
    "ThreadStore",
]
