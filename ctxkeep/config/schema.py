"""Configuration schemas using Pydantic"""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field, field_validator


SummaryMode = Literal["quick", "detailed", "handoff"]


@dataclass(frozen=True)
class TokenBudget:
    """Token ceiling for one model call"""
    context_limit: int
    output_reserve: int = 4096
    target_ratio: float = 0.85

    @property
    def usable_budget(self) -> int:
        return int(self.context_limit * self.target_ratio - self.output_reserve)

    def ratio_for(self, tokens: int) -> float:
        """Share of the context window used by `tokens` plus the reply reserve"""
        if self.context_limit <= 0:
            return float("inf")
        return (tokens + self.output_reserve) / self.context_limit

    def fits(self, tokens: int) -> bool:
        return self.ratio_for(tokens) <= self.target_ratio


class SummaryContextChars(BaseModel):
    """Transcript character budget per summary mode"""
    quick: int = 4000
    detailed: int = 8000
    handoff: int = 16000

    def for_mode(self, mode: SummaryMode) -> int:
        return getattr(self, mode)


class ContextConfig(BaseModel):
    """Context budget and compression settings"""
    context_limit: int = 128000
    output_reserve: int = 4096
    target_ratio: float = 0.85

    prune_minimum_tokens: int = 20000
    prune_protect_tokens: int = 40000
    keep_recent_turns: int = 4
    deep_compression_turns: int = 2
    protected_tools: list[str] = Field(default_factory=lambda: [
        "ask_user", "update_plan", "create_plan",
    ])

    max_tool_result_chars: int = 15000
    max_message_chars: int = 20000

    summary_max_context_chars: SummaryContextChars = Field(default_factory=SummaryContextChars)
    summary_timeout: float = 30.0
    summary_mode: Literal["inline", "background"] = "inline"
    resume_from_last_level: bool = True

    @field_validator("target_ratio")
    @classmethod
    def _check_ratio(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("target_ratio must be in (0, 1]")
        return v

    @field_validator("keep_recent_turns", "deep_compression_turns")
    @classmethod
    def _check_turns(cls, v: int) -> int:
        if v < 1:
            raise ValueError("turn windows must keep at least one turn")
        return v

    def budget(self) -> TokenBudget:
        return TokenBudget(
            context_limit=self.context_limit,
            output_reserve=self.output_reserve,
            target_ratio=self.target_ratio,
        )


class ModelConfig(BaseModel):
    """Model used for summaries"""
    model: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1500
