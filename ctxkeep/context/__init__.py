from .assembler import AssemblyResult, ContextAssembler, ContextStats, system_prompt_for, window_start
from .background import BackgroundSummarizer
from .handoff import build_handoff, render_handoff, render_summary
from .levels import CompressionLevel, level_for_ratio, name_of
from .predictor import CompressionPredictor
from .prune import PrunePlan, RetentionPruner, apply_plan
from .rules import summarize_rules
from .summarize import ModelSummarizer, SummaryEngine
from .tokens import estimate_log, estimate_message, estimate_tokens
from .truncate import truncate_log, truncate_tool_result

__all__ = [
    "AssemblyResult",
    "ContextAssembler",
    "ContextStats",
    "system_prompt_for",
    "window_start",
    "BackgroundSummarizer",
    "build_handoff",
    "render_handoff",
    "render_summary",
    "CompressionLevel",
    "level_for_ratio",
    "name_of",
    "CompressionPredictor",
    "PrunePlan",
    "RetentionPruner",
    "apply_plan",
    "summarize_rules",
    "ModelSummarizer",
    "SummaryEngine",
    "estimate_log",
    "estimate_message",
    "estimate_tokens",
    "truncate_log",
    "truncate_tool_result",
]
