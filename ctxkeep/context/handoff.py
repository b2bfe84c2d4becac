"""Handoff documents - seeding a new thread from a summary of an old one"""

import logging
from pathlib import Path
from typing import Callable

from ctxkeep.session.summary import (
    MAX_KEY_FILES,
    HandoffDocument,
    KeyFileSnapshot,
    StructuredSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_NEXT_STEPS = ["Review changes made so far", "Continue with next logical step"]


def suggested_next_steps(summary: StructuredSummary) -> list[str]:
    steps = list(summary.pending_steps[:3])
    unfixed = [e for e in summary.errors_and_fixes if e.fix == "Not yet fixed"]
    if unfixed:
        steps.append(f"Fix error: {unfixed[0].error[:50]}")
    if not steps:
        steps = list(DEFAULT_NEXT_STEPS)
    return steps[:5]


def _read_text(path: Path, limit: int = 8000) -> str:
    try:
        return path.read_text(errors="replace")[:limit]
    except OSError as e:
        logger.warning(f"Could not snapshot {path}: {e}")
        return ""


def build_handoff(
    summary: StructuredSummary,
    session_id: str,
    working_directory: str | Path,
    last_user_request: str = "",
    include_content: bool = False,
    read_file: Callable[[Path], str] | None = None,
) -> HandoffDocument:
    """Package a summary into a handoff document.

    Key files are the most recent non-deleted file changes. File content is only
    read when `include_content` is set.
    """
    working_directory = str(working_directory)
    reader = read_file or _read_text
    recent = [f for f in summary.file_changes if f.action != "delete"][-MAX_KEY_FILES:]

    snapshots = []
    for change in recent:
        content = ""
        if include_content:
            path = Path(change.path)
            if not path.is_absolute():
                path = Path(working_directory) / path
            content = reader(path)
        snapshots.append(KeyFileSnapshot(
            path=change.path,
            reason=change.summary or change.action,
            content=content,
        ))

    return HandoffDocument(
        from_session_id=session_id,
        summary=summary,
        working_directory=working_directory,
        key_file_snapshots=snapshots,
        last_user_request=(last_user_request or "Continue the task")[:500],
        suggested_next_steps=suggested_next_steps(summary),
    )


def render_handoff(doc: HandoffDocument) -> str:
    """Text injected into the new thread's system prompt"""
    summary = doc.summary
    completed = "\n".join(f"✓ {s}" for s in summary.completed_steps) or "None"
    pending = "\n".join(f"○ {s}" for s in summary.pending_steps) or "None"
    files = "\n".join(
        f"- [{f.action.upper()}] {f.path}: {f.summary}" for f in summary.file_changes
    ) or "None"
    decisions = "\n".join(f"- {d.description}" for d in summary.decisions[-10:]) or "None"

    return f"""## Session Handoff Context

### Objective
{summary.objective}

### Completed Steps
{completed}

### Pending Steps
{pending}

### File Changes
{files}

### Key Decisions
{decisions}

### Last User Request
"{doc.last_user_request}"

---
Continue from where we left off."""


def render_summary(summary: StructuredSummary, detailed: bool = True) -> str:
    """Body of the synthetic compacted-context message"""
    files = "\n".join(f"- {f.action}: {f.path}" for f in summary.file_changes[-10:]) or "None"
    start, end = summary.turn_range

    if not detailed:
        return f"""## Previous Context (Turns {start}-{end})
**Objective:** {summary.objective}
**Files:** {files}
---"""

    completed = "\n".join(f"✓ {s}" for s in summary.completed_steps) or "None"
    pending = "\n".join(f"○ {s}" for s in summary.pending_steps) or "None"
    instructions = "\n".join(f"- {i}" for i in summary.user_instructions[-3:]) or "None"
    errors = "\n".join(f"- {e.error} ({e.fix})" for e in summary.errors_and_fixes) or "None"

    return f"""## Context Summary (Turns {start}-{end})

**Objective:** {summary.objective}

**Completed:**
{completed}

**Pending:**
{pending}

**Files:**
{files}

**Errors:**
{errors}

**User Instructions:**
{instructions}

---"""
