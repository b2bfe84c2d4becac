"""Structured summary and handoff records owned by a thread"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MAX_COMPLETED_STEPS = 20
MAX_USER_INSTRUCTIONS = 5
MAX_KEY_FILES = 5

DecisionType = Literal["file_create", "file_modify", "file_delete", "error_fix", "user_correction"]
FileAction = Literal["create", "modify", "delete"]


@dataclass
class DecisionPoint:
    turn_index: int
    type: DecisionType
    description: str
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "turn_index": self.turn_index,
            "type": self.type,
            "description": self.description,
            "files": self.files,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DecisionPoint":
        return cls(
            turn_index=data.get("turn_index", 0),
            type=data["type"],
            description=data.get("description", ""),
            files=data.get("files", []),
        )


@dataclass
class FileChangeRecord:
    path: str
    action: FileAction
    summary: str = ""
    turn_index: int = 0

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "action": self.action,
            "summary": self.summary,
            "turn_index": self.turn_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileChangeRecord":
        return cls(
            path=data["path"],
            action=data["action"],
            summary=data.get("summary", ""),
            turn_index=data.get("turn_index", 0),
        )


@dataclass
class ErrorFix:
    error: str
    fix: str

    def to_dict(self) -> dict:
        return {"error": self.error, "fix": self.fix}


def dedupe(items: list[str]) -> list[str]:
    """Drop repeated strings, keeping the first occurrence"""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def dedupe_file_changes(changes: list[FileChangeRecord]) -> list[FileChangeRecord]:
    """Keep one record per (path, action); the latest occurrence wins"""
    latest: dict[tuple[str, str], FileChangeRecord] = {}
    for change in changes:
        key = (change.path, change.action)
        latest.pop(key, None)
        latest[key] = change
    return list(latest.values())


@dataclass
class StructuredSummary:
    """Condensed state of a run of conversation turns"""
    objective: str
    completed_steps: list[str] = field(default_factory=list)
    pending_steps: list[str] = field(default_factory=list)
    decisions: list[DecisionPoint] = field(default_factory=list)
    file_changes: list[FileChangeRecord] = field(default_factory=list)
    errors_and_fixes: list[ErrorFix] = field(default_factory=list)
    user_instructions: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)
    turn_range: tuple[int, int] = (0, 0)

    def __post_init__(self):
        self.completed_steps = dedupe(self.completed_steps)[-MAX_COMPLETED_STEPS:]
        self.user_instructions = dedupe(self.user_instructions)[-MAX_USER_INSTRUCTIONS:]
        self.file_changes = dedupe_file_changes(self.file_changes)
        self.turn_range = tuple(self.turn_range)

    def to_dict(self) -> dict:
        return {
            "objective": self.objective,
            "completed_steps": self.completed_steps,
            "pending_steps": self.pending_steps,
            "decisions": [d.to_dict() for d in self.decisions],
            "file_changes": [f.to_dict() for f in self.file_changes],
            "errors_and_fixes": [e.to_dict() for e in self.errors_and_fixes],
            "user_instructions": self.user_instructions,
            "generated_at": self.generated_at.isoformat(),
            "turn_range": list(self.turn_range),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StructuredSummary":
        return cls(
            objective=data.get("objective", ""),
            completed_steps=data.get("completed_steps", []),
            pending_steps=data.get("pending_steps", []),
            decisions=[DecisionPoint.from_dict(d) for d in data.get("decisions", [])],
            file_changes=[FileChangeRecord.from_dict(f) for f in data.get("file_changes", [])],
            errors_and_fixes=[ErrorFix(**e) for e in data.get("errors_and_fixes", [])],
            user_instructions=data.get("user_instructions", []),
            generated_at=datetime.fromisoformat(data["generated_at"]) if data.get("generated_at") else datetime.now(),
            turn_range=tuple(data.get("turn_range", (0, 0))),
        )


def merge_summaries(existing: StructuredSummary, new: StructuredSummary) -> StructuredSummary:
    """Fold `new` into `existing`.

    List fields are unioned (existing entries first, caps applied to the most
    recent); objective and pending steps come from `new` when it has them.
    """
    def union(a: list, b: list, limit: int) -> list:
        seen = set()
        result = []
        for item in a + b:
            key = repr(item.to_dict()) if hasattr(item, "to_dict") else item
            if key not in seen:
                seen.add(key)
                result.append(item)
        return result[-limit:]

    return StructuredSummary(
        objective=new.objective or existing.objective,
        completed_steps=union(existing.completed_steps, new.completed_steps, MAX_COMPLETED_STEPS),
        pending_steps=new.pending_steps or existing.pending_steps,
        decisions=union(existing.decisions, new.decisions, 15),
        file_changes=existing.file_changes + new.file_changes,
        errors_and_fixes=union(existing.errors_and_fixes, new.errors_and_fixes, 10),
        user_instructions=union(existing.user_instructions, new.user_instructions, MAX_USER_INSTRUCTIONS),
        generated_at=max(existing.generated_at, new.generated_at),
        turn_range=(
            min(existing.turn_range[0], new.turn_range[0]),
            max(existing.turn_range[1], new.turn_range[1]),
        ),
    )


@dataclass
class KeyFileSnapshot:
    path: str
    reason: str
    content: str = ""

    def to_dict(self) -> dict:
        return {"path": self.path, "reason": self.reason, "content": self.content}


@dataclass
class HandoffDocument:
    """Everything a fresh thread needs to continue where an old one stopped"""
    from_session_id: str
    summary: StructuredSummary
    working_directory: str
    key_file_snapshots: list[KeyFileSnapshot] = field(default_factory=list)
    last_user_request: str = ""
    suggested_next_steps: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    consumed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_session_id": self.from_session_id,
            "summary": self.summary.to_dict(),
            "working_directory": self.working_directory,
            "key_file_snapshots": [s.to_dict() for s in self.key_file_snapshots],
            "last_user_request": self.last_user_request,
            "suggested_next_steps": self.suggested_next_steps,
            "created_at": self.created_at.isoformat(),
            "consumed_at": self.consumed_at.isoformat() if self.consumed_at else None,
        }
