"""Model-backed summarization for conversation context.

The model is asked for a JSON object shaped like a StructuredSummary. Whatever
goes wrong (transport error, timeout, unparseable reply) the caller gets the
rule-based summary instead; this module never raises to its callers.
"""

import asyncio
import json
import logging

from ctxkeep.config.schema import ContextConfig, ModelConfig, SummaryMode
from ctxkeep.errors import SummarizationError
from ctxkeep.provider.base import Provider, complete, get_provider
from ctxkeep.session.message import (
    AssistantMessage,
    Message,
    ToolResultMessage,
    UserMessage,
    content_text,
    message_text,
)
from ctxkeep.session.summary import DecisionPoint, StructuredSummary

from .rules import continue_step, last_user_request, summarize_rules

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """You are summarizing a coding assistant conversation so it can be continued later.

Respond with ONLY a JSON object (no markdown, no commentary) with this exact structure:
{
  "objective": "string - what the user is trying to achieve",
  "completedSteps": ["what has been done"],
  "pendingSteps": ["what still needs to be done"],
  "userInstructions": ["preferences, constraints or corrections the user gave"]
}

Rules:
- Focus on actions taken, not explanations
- Name concrete files and commands
- Do not invent information not present in the conversation"""

HANDOFF_SYSTEM_PROMPT = """Analyze this conversation and extract structured information for a session handoff.

Respond with ONLY a JSON object (no markdown, no commentary) with this exact structure:
{
  "objective": "string - what the user is trying to achieve",
  "completedSteps": ["what has been done"],
  "pendingSteps": ["what still needs to be done, INCLUDING the last user request if not completed"],
  "userInstructions": ["special requirements or preferences"],
  "keyDecisions": ["important decisions made and why"],
  "userConstraints": ["limits the user set on the solution"],
  "lastRequestStatus": "completed | partial | not_started"
}

CRITICAL: If the last user message contains a request that wasn't fully completed, it MUST appear in "pendingSteps"."""

REQUEST_STATUSES = ("completed", "partial", "not_started")


def format_message_for_transcript(msg: Message) -> str:
    """Compact text form of one message; markers render as empty"""
    if isinstance(msg, UserMessage):
        return f"User: {content_text(msg.content)[:500]}"
    if isinstance(msg, AssistantMessage):
        text = f"Assistant: {msg.content[:500]}"
        calls = [
            f"- {tc.name}({json.dumps(tc.arguments, default=str)[:100]})"
            for tc in msg.tool_calls
            if tc.status == "success"
        ]
        if calls:
            text += "\nTools used:\n" + "\n".join(calls)
        return text
    if isinstance(msg, ToolResultMessage):
        preview = message_text(msg)[:300]
        return f"[tool:{msg.name}] {preview}"
    return ""


def build_transcript(messages: list[Message], max_chars: int) -> str:
    """Most recent messages that fit in `max_chars`, in chronological order"""
    parts: list[str] = []
    total = 0
    for msg in reversed(messages):
        if total >= max_chars:
            break
        text = format_message_for_transcript(msg)
        if not text:
            continue
        parts.append(text)
        total += len(text)
    return "\n\n".join(reversed(parts))


def extract_json_object(text: str) -> dict | None:
    """Parse the first balanced {...} in `text`, ignoring braces inside strings.

    Returns None when there is no such object or it does not decode; nested
    fragments of a malformed reply are never used.
    """
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start:idx + 1])
                except json.JSONDecodeError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _field(parsed: dict, camel: str, snake: str):
    return parsed.get(camel, parsed.get(snake))


def merge_model_fields(
    rules: StructuredSummary,
    parsed: dict,
    mode: SummaryMode,
    request: str | None = None,
) -> StructuredSummary:
    """Combine a parsed model reply with the rule-based summary.

    Objective and pending steps prefer the model; completed steps and user
    instructions are unions that keep every rule-based entry.
    """
    objective = str(parsed.get("objective") or "").strip() or rules.objective
    pending = _string_list(_field(parsed, "pendingSteps", "pending_steps")) or list(rules.pending_steps)
    model_completed = _string_list(_field(parsed, "completedSteps", "completed_steps"))
    model_instructions = _string_list(_field(parsed, "userInstructions", "user_instructions"))
    model_instructions += _string_list(_field(parsed, "userConstraints", "user_constraints"))
    model_decisions = [
        DecisionPoint(turn_index=rules.turn_range[1], type="user_correction", description=text[:150])
        for text in _string_list(_field(parsed, "keyDecisions", "key_decisions"))
    ]

    if mode == "handoff" and request:
        status = _field(parsed, "lastRequestStatus", "last_request_status")
        prefix = request[:30].lower()
        if status != "completed" and not any(prefix in step.lower() for step in pending):
            pending.insert(0, continue_step(request))

    # Model entries first so the size caps trim them before rule-based ones
    return StructuredSummary(
        objective=objective,
        completed_steps=model_completed + rules.completed_steps,
        pending_steps=pending,
        decisions=rules.decisions + model_decisions,
        file_changes=rules.file_changes,
        errors_and_fixes=rules.errors_and_fixes,
        user_instructions=model_instructions + rules.user_instructions,
        turn_range=rules.turn_range,
    )


class ModelSummarizer:
    """Summaries from a language model, with rule-based fallback"""

    def __init__(
        self,
        provider: Provider,
        config: ContextConfig | None = None,
        model_config: ModelConfig | None = None,
    ):
        self.provider = provider
        self.config = config or ContextConfig()
        self.model_config = model_config or ModelConfig()

    async def _request(self, messages: list[Message], mode: SummaryMode, request: str | None) -> dict:
        max_chars = self.config.summary_max_context_chars.for_mode(mode)
        transcript = build_transcript(messages, max_chars)
        if not transcript.strip():
            raise SummarizationError("Nothing to summarize")

        if mode == "handoff":
            system = HANDOFF_SYSTEM_PROMPT
            prompt = f"Analyze the following conversation:\n\n{transcript}\n\nLast user request: \"{request or ''}\""
        else:
            system = SUMMARY_SYSTEM_PROMPT
            prompt = f"Summarize this conversation:\n\n{transcript}"

        result = await complete(
            self.provider,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.model_config.max_tokens,
            temperature=self.model_config.temperature,
        )
        if result.error:
            raise SummarizationError(result.error)
        parsed = extract_json_object(result.content)
        if parsed is None:
            raise SummarizationError("Reply contained no JSON object")
        return parsed

    async def summarize(
        self,
        messages: list[Message],
        mode: SummaryMode = "detailed",
        request: str | None = None,
        turn_offset: int = 0,
    ) -> StructuredSummary:
        rules = summarize_rules(messages, request, turn_offset)
        try:
            parsed = await asyncio.wait_for(
                self._request(messages, mode, request),
                timeout=self.config.summary_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Summary ({mode}) timed out after {self.config.summary_timeout}s, using rule-based summary")
            return rules
        except SummarizationError as e:
            logger.warning(f"Summary ({mode}) failed, using rule-based summary: {e}")
            return rules
        return merge_model_fields(rules, parsed, mode, request)


class SummaryEngine:
    """Single entry point over the rule-based and model-backed strategies"""

    def __init__(self, summarizer: ModelSummarizer | None = None):
        self.summarizer = summarizer

    @classmethod
    def from_config(cls, config: ContextConfig, model_config: ModelConfig) -> "SummaryEngine":
        if not model_config.model:
            return cls()
        provider = get_provider(model_config.model)
        return cls(ModelSummarizer(provider, config, model_config))

    @property
    def has_model(self) -> bool:
        return self.summarizer is not None

    def summarize_rules(
        self,
        messages: list[Message],
        mode: SummaryMode = "quick",
        request: str | None = None,
        turn_offset: int = 0,
    ) -> StructuredSummary:
        if mode == "handoff" and request is None:
            request = last_user_request(messages)
        return summarize_rules(messages, request, turn_offset)

    async def summarize(
        self,
        messages: list[Message],
        mode: SummaryMode = "quick",
        request: str | None = None,
        turn_offset: int = 0,
    ) -> StructuredSummary:
        if mode == "handoff" and request is None:
            request = last_user_request(messages)
        if self.summarizer is None:
            return summarize_rules(messages, request, turn_offset)
        return await self.summarizer.summarize(messages, mode, request, turn_offset)
