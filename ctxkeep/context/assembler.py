"""Context assembly - the per-turn escalation loop.

Starting from a predicted level, each level produces a candidate message list;
the loop stops at the first candidate that fits the token budget, or at the
handoff level. Levels only ever go up within one call.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from ctxkeep.config.schema import ContextConfig, TokenBudget
from ctxkeep.errors import HandoffError, StorageError
from ctxkeep.session.message import (
    AssistantMessage,
    Content,
    Message,
    UserMessage,
    message_text,
    sendable_messages,
    to_wire_messages,
)
from ctxkeep.session.summary import HandoffDocument, StructuredSummary, merge_summaries
from ctxkeep.session.thread import Thread, ThreadLocks, ThreadStore

from .background import BackgroundSummarizer
from .handoff import build_handoff, render_handoff, render_summary
from .levels import CompressionLevel, level_for_ratio, name_of
from .predictor import CompressionPredictor
from .prune import PrunePlan, RetentionPruner, apply_plan
from .rules import last_user_request
from .summarize import SummaryEngine
from .tokens import MESSAGE_OVERHEAD, estimate_content, estimate_log, estimate_tokens
from .truncate import truncate_log

logger = logging.getLogger(__name__)


@dataclass
class ContextStats:
    original_tokens: int
    final_tokens: int
    level: CompressionLevel
    kept_turns: int
    compacted_turns: int = 0
    needs_handoff: bool = False

    @property
    def level_name(self) -> str:
        return name_of(self.level)

    @property
    def saved_percent(self) -> int:
        if self.original_tokens <= 0:
            return 0
        return round((1 - self.final_tokens / self.original_tokens) * 100)

    @property
    def summarized(self) -> bool:
        """Whether the user should see a "context was summarized" indicator"""
        return self.level >= CompressionLevel.DEEP_COMPRESSION

    def to_dict(self) -> dict:
        return {
            "original_tokens": self.original_tokens,
            "final_tokens": self.final_tokens,
            "saved_percent": self.saved_percent,
            "level": int(self.level),
            "level_name": self.level_name,
            "kept_turns": self.kept_turns,
            "compacted_turns": self.compacted_turns,
            "needs_handoff": self.needs_handoff,
        }


@dataclass
class AssemblyResult:
    """Messages to send for this turn and how they were obtained"""
    messages: list[dict]
    level: CompressionLevel
    ratio: float
    handoff_required: bool
    stats: ContextStats
    system_prompt: str = ""
    summary: StructuredSummary | None = None
    prune_plan: PrunePlan = field(default_factory=PrunePlan)
    levels_tried: list[int] = field(default_factory=list)
    error: str | None = None
    persist_error: str | None = None


@dataclass
class _Candidate:
    messages: list[Message]
    plan: PrunePlan = field(default_factory=PrunePlan)
    summary: StructuredSummary | None = None
    compacted_turns: int = 0


def window_start(messages: list[Message], turns: int) -> int:
    """Index of the user message opening the last `turns` turns (0 if fewer)"""
    seen = 0
    for idx in range(len(messages) - 1, -1, -1):
        if isinstance(messages[idx], UserMessage):
            seen += 1
            if seen == turns:
                return idx
    return 0


def count_turns(messages: list[Message]) -> int:
    return sum(1 for m in messages if isinstance(m, UserMessage))


def system_prompt_for(thread: Thread, base: str) -> str:
    """System prompt with any handoff context the thread was seeded with"""
    if not thread.handoff_context:
        return base
    return f"{base}\n\n{thread.handoff_context}" if base else thread.handoff_context


class ContextAssembler:
    """Fits a thread's conversation into the model's context window"""

    def __init__(
        self,
        store: ThreadStore,
        engine: SummaryEngine | None = None,
        config: ContextConfig | None = None,
        predictor: CompressionPredictor | None = None,
        background: BackgroundSummarizer | None = None,
        locks: ThreadLocks | None = None,
    ):
        self.store = store
        self.engine = engine or SummaryEngine()
        self.config = config or ContextConfig()
        self.predictor = predictor
        self.locks = locks or (background.locks if background else ThreadLocks())
        self.background = background
        self.pruner = RetentionPruner.from_config(self.config)

    @property
    def budget(self) -> TokenBudget:
        return self.config.budget()

    # -- levels ------------------------------------------------------------

    def _truncate(self, messages: list[Message]) -> list[Message]:
        return truncate_log(
            messages,
            self.config.max_tool_result_chars,
            self.config.max_message_chars,
            protected_from=window_start(messages, self.config.keep_recent_turns),
        )

    async def _deep_summary(
        self,
        dropped: list[Message],
        stored: StructuredSummary | None,
    ) -> StructuredSummary:
        if self.config.summary_mode == "inline":
            fresh = await self.engine.summarize(dropped, "detailed")
        else:
            fresh = self.engine.summarize_rules(dropped, "detailed")
        return merge_summaries(stored, fresh) if stored else fresh

    async def _apply_level(
        self,
        level: CompressionLevel,
        log: list[Message],
        stored: StructuredSummary | None,
        cache: dict,
    ) -> _Candidate:
        if level in cache:
            return cache[level]

        base = sendable_messages(log)
        if level == CompressionLevel.FULL:
            candidate = _Candidate(messages=base)
        elif level == CompressionLevel.TRUNCATE:
            candidate = _Candidate(messages=self._truncate(base))
        elif level == CompressionLevel.SLIDING_WINDOW:
            plan = self.pruner.plan(log)
            candidate = _Candidate(messages=self._truncate(apply_plan(base, plan)), plan=plan)
        elif level == CompressionLevel.DEEP_COMPRESSION:
            windowed = await self._apply_level(CompressionLevel.SLIDING_WINDOW, log, stored, cache)
            # Levels 1-2 never drop messages, so indices line up with `base`
            cut = window_start(windowed.messages, self.config.deep_compression_turns)
            if cut == 0:
                candidate = windowed
            else:
                dropped = base[:cut]
                summary = await self._deep_summary(dropped, stored)
                marker = AssistantMessage(
                    content=render_summary(summary, detailed=True),
                    metadata={"compacted_context": True, "turn_range": list(summary.turn_range)},
                )
                candidate = _Candidate(
                    messages=[marker] + windowed.messages[cut:],
                    plan=windowed.plan,
                    summary=summary,
                    compacted_turns=count_turns(dropped),
                )
        else:
            deep = await self._apply_level(CompressionLevel.DEEP_COMPRESSION, log, stored, cache)
            summary = await self.engine.summarize(base, "handoff")
            candidate = _Candidate(
                messages=deep.messages,
                plan=deep.plan,
                summary=summary,
                compacted_turns=deep.compacted_turns,
            )

        cache[level] = candidate
        return candidate

    # -- assembly ----------------------------------------------------------

    async def assemble(
        self,
        log: list[Message],
        pending_user_content: Content | None = None,
        system_prompt: str = "",
        start_level: int = 0,
        stored_summary: StructuredSummary | None = None,
    ) -> AssemblyResult:
        """Run the escalation loop over `log` without touching storage"""
        budget = self.budget
        extra = estimate_tokens(system_prompt)
        if pending_user_content:
            extra += MESSAGE_OVERHEAD + estimate_content(pending_user_content)

        original_tokens = estimate_log(sendable_messages(log)) + extra
        level = CompressionLevel(max(0, min(int(start_level), int(CompressionLevel.HANDOFF))))
        cache: dict = {}
        tried: list[int] = []

        while True:
            candidate = await self._apply_level(level, log, stored_summary, cache)
            estimated = estimate_log(candidate.messages) + extra
            ratio = budget.ratio_for(estimated)
            tried.append(int(level))
            logger.info(
                f"Level {int(level)} ({name_of(level)}): {estimated} tokens, "
                f"{ratio:.1%} of {budget.context_limit}"
            )
            if ratio <= budget.target_ratio or level == CompressionLevel.HANDOFF:
                break
            level = CompressionLevel(level + 1)

        handoff_required = level == CompressionLevel.HANDOFF
        error = None
        if handoff_required and ratio > budget.target_ratio:
            error = (
                f"Context still exceeds budget at level 4: "
                f"{estimated} tokens > {budget.usable_budget} usable"
            )
            logger.error(error)

        wire = to_wire_messages(candidate.messages)
        if pending_user_content:
            wire.append({"role": "user", "content": pending_user_content})

        stats = ContextStats(
            original_tokens=original_tokens,
            final_tokens=estimated,
            level=level,
            kept_turns=count_turns(candidate.messages),
            compacted_turns=candidate.compacted_turns,
            needs_handoff=handoff_required,
        )
        return AssemblyResult(
            messages=wire,
            level=level,
            ratio=ratio,
            handoff_required=handoff_required,
            stats=stats,
            system_prompt=system_prompt,
            summary=candidate.summary,
            prune_plan=candidate.plan,
            levels_tried=tried,
            error=error,
        )

    def _starting_level(self, thread: Thread) -> CompressionLevel:
        if not thread.messages:
            return CompressionLevel.FULL
        if self.predictor is not None:
            context_size = sum(len(message_text(m)) for m in thread.messages)
            level = self.predictor.predict_level(len(thread.messages), context_size)
        elif self.config.resume_from_last_level:
            level = thread.last_level
        else:
            level = CompressionLevel.FULL
        # Handoff is only ever reached by escalating
        return CompressionLevel(min(int(level), int(CompressionLevel.DEEP_COMPRESSION)))

    async def assemble_turn(
        self,
        thread_id: str,
        pending_user_content: Content | None = None,
        system_prompt: str = "",
    ) -> AssemblyResult:
        """Assemble this turn's context for a stored thread and persist the outcome.

        Persistence failures are reported on `persist_error`; the assembled
        messages are still returned.
        """
        thread = self.store.load(thread_id)
        system = system_prompt_for(thread, system_prompt)

        if thread.handoff_required:
            logger.warning(f"Thread {thread_id} requires a handoff; refusing to assemble")
            tokens = estimate_log(sendable_messages(thread.messages))
            return AssemblyResult(
                messages=[],
                level=CompressionLevel.HANDOFF,
                ratio=self.budget.ratio_for(tokens),
                handoff_required=True,
                stats=ContextStats(
                    original_tokens=tokens,
                    final_tokens=0,
                    level=CompressionLevel.HANDOFF,
                    kept_turns=0,
                    needs_handoff=True,
                ),
                system_prompt=system,
                summary=thread.summary,
            )

        result = await self.assemble(
            thread.messages,
            pending_user_content,
            system,
            start_level=self._starting_level(thread),
            stored_summary=thread.summary,
        )

        # Level and handoff flag go first; each step can fail without skipping the rest
        steps = [
            lambda: self.store.set_level(
                thread_id,
                result.level,
                handoff_required=True if result.handoff_required else None,
            ),
        ]
        if result.summary is not None:
            steps.append(lambda: self.store.store_summary(thread_id, result.summary))
        if result.prune_plan:
            steps.append(lambda: self.store.mark_compacted(thread_id, result.prune_plan.message_ids))
        if self.predictor is not None:
            context_size = sum(len(message_text(m)) for m in thread.messages)
            steps.append(lambda: self.predictor.record(len(thread.messages), context_size, result.level))

        errors = []
        async with self.locks.get(thread_id):
            for step in steps:
                try:
                    step()
                except StorageError as e:
                    logger.warning(f"Could not persist context state for {thread_id}: {e}")
                    errors.append(str(e))
        if errors:
            result.persist_error = "; ".join(errors)

        if (
            self.background is not None
            and self.config.summary_mode == "background"
            and self.engine.has_model
            and result.level >= CompressionLevel.DEEP_COMPRESSION
        ):
            self.background.request(thread_id)

        return result

    # -- usage and handoff -------------------------------------------------

    def record_usage(self, thread_id: str, input_tokens: int, output_tokens: int):
        """Store the token usage the model reported for the last call"""
        self.store.record_usage(thread_id, input_tokens, output_tokens)

    def usage_level(self, thread: Thread) -> CompressionLevel:
        """Level implied by the last reported usage"""
        used = thread.last_usage.get("input", 0)
        return level_for_ratio(self.budget.ratio_for(used))

    def request_handoff(self, thread_id: str, include_content: bool = False) -> HandoffDocument:
        """Build the handoff document for a thread that reached level 4"""
        thread = self.store.load(thread_id)
        if not thread.handoff_required:
            raise HandoffError(f"Thread {thread_id} does not require a handoff")
        summary = thread.summary or self.engine.summarize_rules(thread.messages, "handoff")
        return build_handoff(
            summary,
            session_id=thread.id,
            working_directory=thread.directory,
            last_user_request=last_user_request(thread.messages),
            include_content=include_content,
        )

    async def consume_handoff(self, doc: HandoffDocument, new_thread_id: str) -> Thread:
        """Seed `new_thread_id` from `doc` and release the source thread"""
        if doc.consumed_at is not None:
            raise HandoffError(f"Handoff from {doc.from_session_id} was already consumed")

        async with self.locks.get(new_thread_id):
            thread = self.store.get(new_thread_id)
            if thread is None:
                thread = self.store.create(doc.working_directory, thread_id=new_thread_id)
            thread.handoff_context = render_handoff(doc)
            thread.handoff_from = doc.from_session_id
            thread.title = f"Continuation: {doc.summary.objective[:50]}"
            self.store.save(thread)

        async with self.locks.get(doc.from_session_id):
            source = self.store.get(doc.from_session_id)
            if source is not None:
                source.handoff_required = False
                self.store.save(source)

        doc.consumed_at = datetime.now()
        logger.info(f"Seeded {new_thread_id} from handoff of {doc.from_session_id}")
        return thread
