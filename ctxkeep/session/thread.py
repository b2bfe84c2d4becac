"""Thread records - the persisted state of one conversation"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ctxkeep.errors import ThreadNotFoundError
from ctxkeep.storage.storage import Storage

from .message import (
    Message,
    ToolResultMessage,
    mark_compacted,
    message_from_dict,
    message_to_dict,
)
from .summary import StructuredSummary

logger = logging.getLogger(__name__)


@dataclass
class Thread:
    """Represents a conversation thread with the agent"""

    id: str
    directory: Path
    title: str = "New Thread"
    messages: list[Message] = field(default_factory=list)
    summary: StructuredSummary | None = None
    summary_generation: int = 0
    last_level: int = 0
    last_usage: dict[str, int] = field(default_factory=dict)
    handoff_required: bool = False
    handoff_context: str | None = None
    handoff_from: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: dict) -> "Thread":
        summary = data.get("summary")
        return cls(
            id=data["id"],
            directory=Path(data["directory"]),
            title=data.get("title", "New Thread"),
            messages=[message_from_dict(m) for m in data.get("messages", [])],
            summary=StructuredSummary.from_dict(summary) if summary else None,
            summary_generation=data.get("summary_generation", 0),
            last_level=data.get("last_level", 0),
            last_usage=data.get("last_usage", {}),
            handoff_required=data.get("handoff_required", False),
            handoff_context=data.get("handoff_context"),
            handoff_from=data.get("handoff_from"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "directory": str(self.directory),
            "title": self.title,
            "messages": [message_to_dict(m) for m in self.messages],
            "summary": self.summary.to_dict() if self.summary else None,
            "summary_generation": self.summary_generation,
            "last_level": self.last_level,
            "last_usage": self.last_usage,
            "handoff_required": self.handoff_required,
            "handoff_context": self.handoff_context,
            "handoff_from": self.handoff_from,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def turn_count(self) -> int:
        return sum(1 for m in self.messages if m.role == "user")


class ThreadStore:
    """Storage-backed persistence for threads.

    All writes for one thread are expected to go through the same store; callers
    serialize concurrent writers with `ThreadLocks`.
    """

    PREFIX = "thread"

    def _key(self, thread_id: str) -> list[str]:
        return [self.PREFIX, thread_id]

    def create(self, directory: Path, thread_id: str | None = None, title: str = "New Thread") -> Thread:
        """Create and persist a new thread"""
        thread_id = thread_id or f"thread_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"
        thread = Thread(id=thread_id, directory=Path(directory).resolve(), title=title)
        self.save(thread)
        return thread

    def get(self, thread_id: str) -> Thread | None:
        data = Storage.read(self._key(thread_id))
        if not data:
            return None
        return Thread.from_dict(data)

    def load(self, thread_id: str) -> Thread:
        thread = self.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    def save(self, thread: Thread):
        thread.updated_at = datetime.now()
        Storage.write(self._key(thread.id), thread.to_dict())

    def list_threads(self) -> list[dict]:
        """List all saved threads, most recently updated first"""
        threads = []
        for key in Storage.list([self.PREFIX]):
            data = Storage.read(key)
            if data:
                threads.append({
                    "id": data["id"],
                    "title": data.get("title", "New Thread"),
                    "updated_at": data.get("updated_at"),
                    "handoff_required": data.get("handoff_required", False),
                })
        return sorted(threads, key=lambda x: x.get("updated_at", ""), reverse=True)

    def append(self, thread_id: str, *messages: Message) -> Thread:
        """Append messages to a thread's log"""
        thread = self.load(thread_id)
        thread.messages.extend(messages)
        self.save(thread)
        return thread

    def read_log(self, thread_id: str) -> list[Message]:
        return list(self.load(thread_id).messages)

    def mark_compacted(self, thread_id: str, message_ids: list[str], when: datetime | None = None) -> int:
        """Set compacted_at on the given tool messages; returns how many changed"""
        if not message_ids:
            return 0
        when = when or datetime.now()
        wanted = set(message_ids)
        thread = self.load(thread_id)
        changed = 0
        for idx, msg in enumerate(thread.messages):
            if isinstance(msg, ToolResultMessage) and msg.id in wanted and msg.compacted_at is None:
                thread.messages[idx] = mark_compacted(msg, when)
                changed += 1
        if changed:
            self.save(thread)
        logger.debug(f"Compacted {changed}/{len(wanted)} tool results in {thread_id}")
        return changed

    def store_summary(self, thread_id: str, summary: StructuredSummary) -> int:
        """Replace the stored summary; returns the new summary generation"""
        thread = self.load(thread_id)
        thread.summary = summary
        thread.summary_generation += 1
        self.save(thread)
        return thread.summary_generation

    def set_level(self, thread_id: str, level: int, handoff_required: bool | None = None):
        thread = self.load(thread_id)
        thread.last_level = int(level)
        if handoff_required is not None:
            thread.handoff_required = handoff_required
        self.save(thread)

    def record_usage(self, thread_id: str, input_tokens: int, output_tokens: int):
        thread = self.load(thread_id)
        thread.last_usage = {"input": input_tokens, "output": output_tokens}
        self.save(thread)


class ThreadLocks:
    """One asyncio.Lock per thread id, for the single-writer rule.

    Locks are held weakly: an entry lives while some caller holds or waits on
    the lock, so threads that go idle do not accumulate.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[thread_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
