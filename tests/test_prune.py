"""Tests for tool-output retention planning and truncation"""

from datetime import datetime, timedelta

import pytest

from ctxkeep.config.schema import ContextConfig
from ctxkeep.context.prune import PrunePlan, RetentionPruner, apply_plan
from ctxkeep.context.truncate import truncate_log, truncate_tool_result
from ctxkeep.session.message import (
    CheckpointMessage,
    ToolResultMessage,
    UserMessage,
)


@pytest.fixture
def pruner():
    return RetentionPruner(keep_recent_turns=2, prune_protect_tokens=100, prune_minimum_tokens=50)


@pytest.fixture
def log(make_turn):
    """Five turns, each with a 100-token tool result"""
    messages = []
    for i in range(5):
        messages += make_turn(f"Step {i}", args={"path": f"f{i}.py"}, result="x" * 400)
    return messages


def tool_ids(messages):
    return [m.id for m in messages if isinstance(m, ToolResultMessage)]


class TestRetentionPruner:
    def test_plans_oldest_beyond_protect(self, pruner, log):
        plan = pruner.plan(log)
        ids = tool_ids(log)

        # Turns 3-4 are in the recent window, turn 2 fits under the protect budget
        assert plan.message_ids == [ids[1], ids[0]]
        assert plan.pruned_tokens == 200
        assert plan.total_tokens == 300
        assert plan

    def test_never_plans_recent_window(self, pruner, log):
        plan = pruner.plan(log)
        recent = set(tool_ids(log[-8:]))
        assert not recent & set(plan.message_ids)

    def test_skips_protected_tools(self, make_turn):
        messages = make_turn("Ask", tool="ask_user", result="x" * 4000)
        for i in range(4):
            messages += make_turn(f"Step {i}", result="x" * 400)
        plan = RetentionPruner(keep_recent_turns=2, prune_protect_tokens=100, prune_minimum_tokens=50).plan(messages)

        protected_id = tool_ids(messages)[0]
        assert protected_id not in plan.message_ids
        assert plan.message_ids == [tool_ids(messages)[1]]

    def test_below_minimum_is_empty(self, log):
        plan = RetentionPruner(keep_recent_turns=2, prune_protect_tokens=100, prune_minimum_tokens=500).plan(log)
        assert not plan
        assert len(plan) == 0
        assert plan.total_tokens == 300

    def test_stops_at_session_start(self, pruner, log):
        # Marker right before turn 2: only turn 2 is walked
        log.insert(8, CheckpointMessage(type="session_start"))
        plan = pruner.plan(log)
        assert not plan
        assert plan.total_tokens == 100

    def test_skips_already_compacted(self, pruner, log):
        first = apply_plan(log, pruner.plan(log))
        second = pruner.plan(first)
        assert not second

    def test_from_config(self):
        config = ContextConfig(keep_recent_turns=3, protected_tools=["custom"])
        pruner = RetentionPruner.from_config(config)
        assert pruner.keep_recent_turns == 3
        assert pruner.protected_tools == frozenset({"custom"})
        assert pruner.prune_minimum_tokens == 20000


class TestApplyPlan:
    def test_does_not_mutate_input(self, pruner, log):
        plan = pruner.plan(log)
        result = apply_plan(log, plan)
        assert all(m.compacted_at is None for m in log if isinstance(m, ToolResultMessage))
        compacted = [m.id for m in result if isinstance(m, ToolResultMessage) and m.compacted_at]
        assert sorted(compacted) == sorted(plan.message_ids)

    def test_idempotent(self, pruner, log):
        plan = pruner.plan(log)
        when = datetime(2024, 1, 1)
        once = apply_plan(log, plan, when)
        twice = apply_plan(once, plan, when + timedelta(hours=1))
        assert once == twice

    def test_empty_plan_copies(self, log):
        result = apply_plan(log, PrunePlan())
        assert result == log
        assert result is not log


class TestTruncate:
    def test_short_unchanged(self):
        assert truncate_tool_result("short", 100) == "short"

    def test_head_and_tail(self):
        content = "a" * 500 + "b" * 500
        result = truncate_tool_result(content, 100)
        assert result.startswith("a" * 60)
        assert result.endswith("b" * 30)
        assert "[910 chars omitted]" in result

    def test_errors_get_more_room(self):
        error = "Error: " + "x" * 130
        assert truncate_tool_result(error, 100) == error
        long_error = "Error: " + "x" * 200
        assert truncate_tool_result(long_error, 100) != long_error

    def test_truncate_log_keeps_every_message(self, log):
        result = truncate_log(log, max_tool_chars=100, max_message_chars=100)
        assert len(result) == len(log)
        assert [m.id for m in result] == [m.id for m in log]

    def test_protected_window_keeps_text(self):
        long_text = "y" * 500
        messages = [UserMessage(content=long_text), UserMessage(content=long_text)]
        result = truncate_log(messages, max_tool_chars=100, max_message_chars=100, protected_from=1)
        assert "chars omitted" in result[0].content
        assert result[1].content == long_text

    def test_compacted_tool_left_alone(self):
        msg = ToolResultMessage(tool_call_id="c1", name="bash", content="z" * 1000, compacted_at=datetime.now())
        assert truncate_log([msg], 100, 100)[0] is msg
