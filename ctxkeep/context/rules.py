"""Rule-based summary extraction (no model call).

Always available and total: every function here returns a value for any log,
which is what lets the model-backed path fall back to it unconditionally.
"""

import re

from ctxkeep.session.message import (
    AssistantMessage,
    Message,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    content_text,
)
from ctxkeep.session.summary import (
    MAX_COMPLETED_STEPS,
    MAX_USER_INSTRUCTIONS,
    DecisionPoint,
    ErrorFix,
    FileChangeRecord,
    StructuredSummary,
    dedupe,
)

from .truncate import ERROR_PATTERN

OBJECTIVE_MAX_CHARS = 200
SENTENCE_PATTERN = re.compile(r"^[^.!?。！？]+[.!?。！？]?")
UNKNOWN_OBJECTIVE = "Unknown objective"

FILE_ACTIONS = {
    "write_file": "create",
    "create_file": "create",
    "edit_file": "modify",
    "replace_file_content": "modify",
    "delete_file": "delete",
}
ACTION_VERBS = {"create": "Created", "modify": "Modified", "delete": "Deleted"}

INSTRUCTION_PATTERNS = [
    re.compile(r"\b(please|must|should|don't|do not|always|never)\b", re.IGNORECASE),
    re.compile(r"\b(remember|note|important)\b", re.IGNORECASE),
    re.compile(r"请|必须|不要|应该|需要|记住|注意|重要"),
]
CORRECTION_PATTERN = re.compile(r"^\s*(no[,.!]|actually\b|instead\b|wait\b|that's wrong)", re.IGNORECASE)
LIST_ITEM_PATTERN = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+)$", re.MULTILINE)


def extract_objective(text: str) -> str:
    """Leading sentence of `text`, or its raw prefix when no short sentence is found"""
    text = text.strip()
    if not text:
        return UNKNOWN_OBJECTIVE
    match = SENTENCE_PATTERN.match(text)
    if match and len(match.group(0)) > 20:
        return match.group(0)[:OBJECTIVE_MAX_CHARS].strip()
    return text[:OBJECTIVE_MAX_CHARS]


def continue_step(request: str) -> str:
    suffix = "..." if len(request) > 100 else ""
    return f"Continue: {request[:100]}{suffix}"


def last_user_request(messages: list[Message]) -> str:
    for msg in reversed(messages):
        if isinstance(msg, UserMessage):
            text = content_text(msg.content).strip()
            if text:
                return text
    return ""


def _result_contents(messages: list[Message]) -> dict[str, str]:
    return {
        m.tool_call_id: m.content
        for m in messages
        if isinstance(m, ToolResultMessage)
    }


def is_successful(tc: ToolCall, results: dict[str, str]) -> bool:
    if tc.status != "success":
        return False
    content = results.get(tc.id)
    return not (content and ERROR_PATTERN.match(content))


def step_label(tc: ToolCall) -> str:
    """`"<tool>: <path-or-arg-summary>"` for a completed tool call"""
    args = tc.arguments
    detail = args.get("path") or args.get("command") or args.get("cmd")
    if detail is None and args:
        detail = next(iter(args.values()))
    detail = str(detail) if detail is not None else ""
    if len(detail) > 60:
        detail = detail[:57] + "..."
    return f"{tc.name}: {detail}" if detail else tc.name


def _tool_calls_by_turn(messages: list[Message], turn_offset: int):
    """Yield (turn_index, tool_call) for every assistant tool call, in order"""
    turn = turn_offset - 1
    for msg in messages:
        if isinstance(msg, UserMessage):
            turn += 1
        elif isinstance(msg, AssistantMessage):
            for tc in msg.tool_calls:
                yield max(turn, turn_offset), tc


def extract_file_changes(messages: list[Message], turn_offset: int = 0) -> list[FileChangeRecord]:
    results = _result_contents(messages)
    changes = []
    for turn, tc in _tool_calls_by_turn(messages, turn_offset):
        action = FILE_ACTIONS.get(tc.name)
        path = tc.arguments.get("path")
        if not action or not path or not is_successful(tc, results):
            continue
        changes.append(FileChangeRecord(
            path=str(path),
            action=action,
            summary=f"{ACTION_VERBS[action]} {path}",
            turn_index=turn,
        ))
    return changes


def extract_completed_steps(messages: list[Message]) -> list[str]:
    results = _result_contents(messages)
    steps = [
        step_label(tc)
        for _, tc in _tool_calls_by_turn(messages, 0)
        if is_successful(tc, results)
    ]
    # Most recent occurrence decides the position
    deduped = list(reversed(dedupe(list(reversed(steps)))))
    return deduped[-MAX_COMPLETED_STEPS:]


def has_recent_success(messages: list[Message], window: int = 5) -> bool:
    results = _result_contents(messages)
    for msg in messages[-window:]:
        if isinstance(msg, AssistantMessage):
            if any(is_successful(tc, results) for tc in msg.tool_calls):
                return True
    return False


def extract_pending_steps(messages: list[Message], request: str | None = None) -> list[str]:
    pending = []
    if request and not has_recent_success(messages):
        pending.append(continue_step(request))

    last_assistant = next(
        (m for m in reversed(messages) if isinstance(m, AssistantMessage) and m.content),
        None,
    )
    if last_assistant is not None:
        for item in LIST_ITEM_PATTERN.findall(last_assistant.content):
            item = item.strip()
            if 10 < len(item) < 200:
                pending.append(item)
    return dedupe(pending)[:5]


def extract_decisions(messages: list[Message], turn_offset: int = 0) -> list[DecisionPoint]:
    results = _result_contents(messages)
    decisions = []
    failed: set[str] = set()
    for turn, tc in _tool_calls_by_turn(messages, turn_offset):
        ok = is_successful(tc, results)
        if not ok:
            failed.add(tc.name)
            continue
        if tc.name in failed:
            failed.discard(tc.name)
            decisions.append(DecisionPoint(
                turn_index=turn,
                type="error_fix",
                description=f"Retried {tc.name} after an error",
                files=[str(tc.arguments["path"])] if tc.arguments.get("path") else [],
            ))
        action = FILE_ACTIONS.get(tc.name)
        path = tc.arguments.get("path")
        if action and path:
            decisions.append(DecisionPoint(
                turn_index=turn,
                type=f"file_{action}",
                description=f"{action}: {path}",
                files=[str(path)],
            ))

    turn = turn_offset - 1
    for msg in messages:
        if isinstance(msg, UserMessage):
            turn += 1
            text = content_text(msg.content)
            if CORRECTION_PATTERN.match(text):
                decisions.append(DecisionPoint(
                    turn_index=max(turn, turn_offset),
                    type="user_correction",
                    description=text.strip()[:150],
                ))
    decisions.sort(key=lambda d: d.turn_index)
    return decisions


def extract_errors_and_fixes(messages: list[Message]) -> list[ErrorFix]:
    calls: dict[str, tuple[int, ToolCall]] = {}
    for idx, msg in enumerate(messages):
        if isinstance(msg, AssistantMessage):
            for tc in msg.tool_calls:
                calls[tc.id] = (idx, tc)

    results = _result_contents(messages)
    write_positions = [
        idx for idx, msg in enumerate(messages)
        if isinstance(msg, AssistantMessage)
        and any(tc.name in FILE_ACTIONS and is_successful(tc, results) for tc in msg.tool_calls)
    ]

    errors = []
    for idx, msg in enumerate(messages):
        if not isinstance(msg, ToolResultMessage) or msg.compacted_at:
            continue
        call = calls.get(msg.tool_call_id)
        errored = bool(ERROR_PATTERN.match(msg.content)) or (call is not None and call[1].status == "error")
        if not errored:
            continue
        error_line = next(
            (line for line in msg.content.splitlines() if re.search(r"error|failed", line, re.IGNORECASE)),
            msg.content[:100],
        )
        fixed = any(pos > idx for pos in write_positions)
        errors.append(ErrorFix(
            error=error_line[:100],
            fix="Fixed in subsequent changes" if fixed else "Not yet fixed",
        ))
    return errors[-5:]


def extract_user_instructions(messages: list[Message]) -> list[str]:
    instructions = []
    for msg in messages:
        if not isinstance(msg, UserMessage):
            continue
        text = content_text(msg.content).strip()
        if text and any(p.search(text) for p in INSTRUCTION_PATTERNS):
            instructions.append(text[:150])
    return dedupe(instructions)[-MAX_USER_INSTRUCTIONS:]


def turn_range(messages: list[Message], turn_offset: int = 0) -> tuple[int, int]:
    turns = sum(1 for m in messages if isinstance(m, UserMessage))
    return (turn_offset, turn_offset + max(turns - 1, 0))


def summarize_rules(
    messages: list[Message],
    request: str | None = None,
    turn_offset: int = 0,
) -> StructuredSummary:
    """Build a summary from the log alone"""
    first_user = next((m for m in messages if isinstance(m, UserMessage)), None)
    objective = extract_objective(content_text(first_user.content)) if first_user else UNKNOWN_OBJECTIVE

    return StructuredSummary(
        objective=objective,
        completed_steps=extract_completed_steps(messages),
        pending_steps=extract_pending_steps(messages, request),
        decisions=extract_decisions(messages, turn_offset),
        file_changes=extract_file_changes(messages, turn_offset),
        errors_and_fixes=extract_errors_and_fixes(messages),
        user_instructions=extract_user_instructions(messages),
        turn_range=turn_range(messages, turn_offset),
    )
