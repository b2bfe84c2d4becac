"""Tests for token estimation and compression levels"""

import json
import math
from datetime import datetime

from ctxkeep.context.levels import CompressionLevel, level_for_ratio, name_of
from ctxkeep.context.tokens import (
    IMAGE_TOKENS,
    MESSAGE_OVERHEAD,
    TOOL_CALL_OVERHEAD,
    estimate_log,
    estimate_message,
    estimate_tokens,
    estimate_wire,
)
from ctxkeep.session.message import (
    COMPACTED_PLACEHOLDER,
    AssistantMessage,
    CheckpointMessage,
    InterruptedToolMessage,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0

    def test_rounds_half_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 1
        assert estimate_tokens("abcdef") == 2
        assert estimate_tokens("x" * 400) == 100

    def test_user_message(self):
        assert estimate_message(UserMessage(content="abcd")) == MESSAGE_OVERHEAD + 1

    def test_image_parts_count_fixed(self):
        msg = UserMessage(content=[
            {"type": "text", "text": "abcd"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64," + "A" * 50000}},
        ])
        assert estimate_message(msg) == MESSAGE_OVERHEAD + 1 + IMAGE_TOKENS

    def test_assistant_tool_calls(self):
        msg = AssistantMessage(tool_calls=[ToolCall(id="c1", name="read", arguments={})])
        expected = MESSAGE_OVERHEAD + TOOL_CALL_OVERHEAD + estimate_tokens("read") + estimate_tokens(json.dumps({}))
        assert estimate_message(msg) == expected

    def test_markers_count_zero(self):
        assert estimate_message(CheckpointMessage(type="session_start")) == 0
        assert estimate_message(InterruptedToolMessage(name="bash")) == 0

    def test_compacted_tool_uses_placeholder(self):
        msg = ToolResultMessage(
            tool_call_id="c1", name="read_file", content="x" * 10000, compacted_at=datetime.now()
        )
        assert estimate_message(msg) == MESSAGE_OVERHEAD + estimate_tokens(COMPACTED_PLACEHOLDER)

    def test_estimate_log_sums(self):
        msgs = [UserMessage(content="abcd"), AssistantMessage(content="abcdefgh")]
        assert estimate_log(msgs) == (MESSAGE_OVERHEAD + 1) + (MESSAGE_OVERHEAD + 2)

    def test_estimate_wire(self):
        wire = [
            {"role": "user", "content": "abcd"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "read", "arguments": "{}"}}],
            },
        ]
        expected = (MESSAGE_OVERHEAD + 1) + (MESSAGE_OVERHEAD + TOOL_CALL_OVERHEAD + 1 + 1)
        assert estimate_wire(wire) == expected


class TestLevels:
    def test_breakpoints(self):
        assert level_for_ratio(0.0) == CompressionLevel.FULL
        assert level_for_ratio(0.49) == CompressionLevel.FULL
        assert level_for_ratio(0.5) == CompressionLevel.TRUNCATE
        assert level_for_ratio(0.7) == CompressionLevel.SLIDING_WINDOW
        assert level_for_ratio(0.85) == CompressionLevel.DEEP_COMPRESSION
        assert level_for_ratio(0.95) == CompressionLevel.HANDOFF

    def test_out_of_range(self):
        assert level_for_ratio(-1.0) == CompressionLevel.FULL
        assert level_for_ratio(3.0) == CompressionLevel.HANDOFF
        assert level_for_ratio(math.nan) == CompressionLevel.FULL

    def test_monotonic(self):
        ratios = [i / 100 for i in range(0, 130)]
        levels = [level_for_ratio(r) for r in ratios]
        assert levels == sorted(levels)

    def test_names(self):
        assert name_of(0) == "Full Context"
        assert name_of(CompressionLevel.HANDOFF) == "Session Handoff"
