"""Retention planning for old tool outputs.

Walks a log from newest to oldest and decides which tool results may have their
content cleared. Nothing is mutated here; callers apply the returned plan.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from ctxkeep.session.message import (
    CheckpointMessage,
    Message,
    ToolResultMessage,
    UserMessage,
    mark_compacted,
)

from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

PRUNE_MINIMUM = 20_000
PRUNE_PROTECT = 40_000
PROTECTED_TOOLS = frozenset({"ask_user", "update_plan", "create_plan"})


@dataclass
class PrunePlan:
    """Tool message ids to compact, with the token accounting behind the choice"""
    message_ids: list[str] = field(default_factory=list)
    pruned_tokens: int = 0
    total_tokens: int = 0

    def __bool__(self) -> bool:
        return bool(self.message_ids)

    def __len__(self) -> int:
        return len(self.message_ids)


class RetentionPruner:
    def __init__(
        self,
        keep_recent_turns: int = 2,
        prune_protect_tokens: int = PRUNE_PROTECT,
        prune_minimum_tokens: int = PRUNE_MINIMUM,
        protected_tools: frozenset[str] | set[str] | list[str] = PROTECTED_TOOLS,
    ):
        self.keep_recent_turns = keep_recent_turns
        self.prune_protect_tokens = prune_protect_tokens
        self.prune_minimum_tokens = prune_minimum_tokens
        self.protected_tools = frozenset(protected_tools)

    @classmethod
    def from_config(cls, config) -> "RetentionPruner":
        return cls(
            keep_recent_turns=config.keep_recent_turns,
            prune_protect_tokens=config.prune_protect_tokens,
            prune_minimum_tokens=config.prune_minimum_tokens,
            protected_tools=config.protected_tools,
        )

    def plan(self, messages: list[Message]) -> PrunePlan:
        """Decide which tool results are old enough and large enough to clear"""
        total = 0
        pruned = 0
        candidates: list[str] = []
        turns = 0

        for msg in reversed(messages):
            if isinstance(msg, UserMessage):
                turns += 1
            if turns < self.keep_recent_turns:
                continue

            if isinstance(msg, CheckpointMessage) and msg.type == "session_start":
                break

            if not isinstance(msg, ToolResultMessage):
                continue
            if msg.name in self.protected_tools:
                continue
            if msg.compacted_at is not None:
                continue

            estimate = estimate_tokens(msg.content)
            total += estimate
            if total > self.prune_protect_tokens:
                pruned += estimate
                candidates.append(msg.id)

        logger.info(
            f"Found {len(candidates)} tool results to prune, {pruned}/{total} tokens"
        )

        if pruned <= self.prune_minimum_tokens:
            return PrunePlan(total_tokens=total)
        return PrunePlan(message_ids=candidates, pruned_tokens=pruned, total_tokens=total)


def apply_plan(messages: list[Message], plan: PrunePlan, when: datetime | None = None) -> list[Message]:
    """Return a copy of `messages` with the planned tool results compacted.

    Messages already compacted keep their original timestamp, so applying the
    same plan twice gives the same result as applying it once.
    """
    if not plan:
        return list(messages)
    when = when or datetime.now()
    wanted = set(plan.message_ids)
    result = []
    for msg in messages:
        if isinstance(msg, ToolResultMessage) and msg.id in wanted:
            msg = mark_compacted(msg, when)
        result.append(msg)
    return result
