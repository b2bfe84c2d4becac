"""Tests for model-backed summaries and their rule-based fallback"""

import json
import logging

import pytest

from ctxkeep.config.schema import ContextConfig, ModelConfig
from ctxkeep.context.rules import UNKNOWN_OBJECTIVE, summarize_rules
from ctxkeep.context.summarize import (
    HANDOFF_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    ModelSummarizer,
    SummaryEngine,
    build_transcript,
    extract_json_object,
    merge_model_fields,
)
from ctxkeep.session.message import UserMessage


@pytest.fixture
def messages(make_turn):
    return make_turn("Build the export feature for reports.", tool="write_file", args={"path": "export.py"})


def reply(**fields) -> str:
    return f"Here is the summary:\n{json.dumps(fields)}\nLet me know if you need more."


class TestJsonExtraction:
    def test_embedded_in_prose(self):
        text = 'noise {"a": "}{", "b": {"c": 1}} trailing'
        assert extract_json_object(text) == {"a": "}{", "b": {"c": 1}}

    def test_malformed_object_gives_none(self):
        assert extract_json_object('{bad} then {"ok": true}') is None
        assert extract_json_object('{objective: "x", "d": {"pendingSteps": ["y"]}}') is None

    def test_none_when_missing(self):
        assert extract_json_object("no json here") is None
        assert extract_json_object("[1, 2]") is None


class TestTranscript:
    def test_keeps_most_recent_in_order(self):
        msgs = [UserMessage(content=f"message {i} " + "a" * 90) for i in range(10)]
        transcript = build_transcript(msgs, max_chars=250)
        assert "message 6" not in transcript
        assert transcript.index("message 7") < transcript.index("message 9")


class TestMergeModelFields:
    def test_model_fields_win(self, messages):
        rules = summarize_rules(messages)
        merged = merge_model_fields(
            rules,
            {"objective": "Ship CSV export", "completedSteps": ["Designed the API"], "pendingSteps": ["Write docs"]},
            "detailed",
        )
        assert merged.objective == "Ship CSV export"
        assert merged.completed_steps == ["Designed the API", "write_file: export.py"]
        assert merged.pending_steps == ["Write docs"]
        assert merged.file_changes == rules.file_changes

    def test_empty_model_fields_keep_rules(self, messages):
        rules = summarize_rules(messages)
        merged = merge_model_fields(rules, {"objective": "", "pending_steps": []}, "quick")
        assert merged.objective == rules.objective
        assert merged.pending_steps == rules.pending_steps

    def test_key_decisions_become_decision_points(self, messages):
        rules = summarize_rules(messages)
        merged = merge_model_fields(
            rules,
            {"keyDecisions": ["Use streaming writes for large reports"], "userConstraints": ["No new dependencies"]},
            "handoff",
        )
        assert merged.decisions[-1].type == "user_correction"
        assert merged.decisions[-1].description == "Use streaming writes for large reports"
        assert "No new dependencies" in merged.user_instructions


class TestModelSummarizer:
    @pytest.mark.asyncio
    async def test_success(self, fake_provider, messages):
        provider = fake_provider(reply=reply(
            objective="Ship CSV export",
            completedSteps=["Designed the API"],
            pendingSteps=["Write docs"],
            userConstraints=["Use tabs"],
        ))
        summary = await ModelSummarizer(provider).summarize(messages, "detailed")

        assert summary.objective == "Ship CSV export"
        assert "Designed the API" in summary.completed_steps
        assert "write_file: export.py" in summary.completed_steps
        assert summary.pending_steps == ["Write docs"]
        assert summary.user_instructions == ["Use tabs"]
        assert provider.calls[0]["system"] == SUMMARY_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_garbage_reply_falls_back(self, fake_provider, messages):
        provider = fake_provider(reply="I cannot summarize that.")
        summary = await ModelSummarizer(provider).summarize(messages)
        assert summary.objective == "Build the export feature for reports."

    @pytest.mark.asyncio
    async def test_transport_error_falls_back(self, fake_provider, messages, caplog):
        provider = fake_provider(error=RuntimeError("connection reset"))
        with caplog.at_level(logging.WARNING):
            summary = await ModelSummarizer(provider).summarize(messages)
        assert summary.objective == "Build the export feature for reports."
        assert "using rule-based summary" in caplog.text

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, fake_provider, messages):
        provider = fake_provider(hang=True)
        summarizer = ModelSummarizer(provider, ContextConfig(summary_timeout=0.05))
        summary = await summarizer.summarize(messages)
        assert summary.objective == "Build the export feature for reports."

    @pytest.mark.asyncio
    async def test_nothing_to_summarize(self, fake_provider):
        provider = fake_provider(reply=reply(objective="ignored"))
        summary = await ModelSummarizer(provider).summarize([])
        assert summary.objective == UNKNOWN_OBJECTIVE
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_handoff_adds_continue_step(self, fake_provider, messages):
        provider = fake_provider(reply=reply(
            objective="Ship CSV export", pendingSteps=["Write docs"], lastRequestStatus="partial",
        ))
        summary = await ModelSummarizer(provider).summarize(
            messages, "handoff", request="Add pagination to the report list"
        )
        assert summary.pending_steps[0] == "Continue: Add pagination to the report list"
        assert "Write docs" in summary.pending_steps
        assert provider.calls[0]["system"] == HANDOFF_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_handoff_completed_request(self, fake_provider, messages):
        provider = fake_provider(reply=reply(
            objective="Ship CSV export", pendingSteps=["Write docs"], lastRequestStatus="completed",
        ))
        summary = await ModelSummarizer(provider).summarize(messages, "handoff", request="Add pagination")
        assert summary.pending_steps == ["Write docs"]

    @pytest.mark.asyncio
    async def test_handoff_error_falls_back(self, fake_provider, messages, caplog):
        provider = fake_provider(error=RuntimeError("connection reset"))
        with caplog.at_level(logging.WARNING):
            summary = await ModelSummarizer(provider).summarize(messages, "handoff", request="Add pagination")
        assert summary.objective == "Build the export feature for reports."
        assert "Summary (handoff) failed" in caplog.text

    @pytest.mark.asyncio
    async def test_handoff_timeout_falls_back(self, fake_provider, messages):
        provider = fake_provider(hang=True)
        summarizer = ModelSummarizer(provider, ContextConfig(summary_timeout=0.05))
        summary = await summarizer.summarize(messages, "handoff", request="Add pagination")
        assert summary.objective == "Build the export feature for reports."
        assert summary.turn_range == summarize_rules(messages).turn_range


class TestSummaryEngine:
    def test_from_config_without_model(self):
        engine = SummaryEngine.from_config(ContextConfig(), ModelConfig())
        assert not engine.has_model

    @pytest.mark.asyncio
    async def test_rules_only(self, messages):
        summary = await SummaryEngine().summarize(messages, "detailed")
        assert summary.objective == "Build the export feature for reports."

    @pytest.mark.asyncio
    async def test_handoff_defaults_request(self, fake_provider, messages):
        provider = fake_provider(reply=reply(objective="Ship CSV export", lastRequestStatus="not_started"))
        engine = SummaryEngine(ModelSummarizer(provider))
        summary = await engine.summarize(messages, "handoff")
        assert summary.pending_steps[0] == "Continue: Build the export feature for reports."
        assert "Build the export feature for reports." in provider.calls[0]["messages"][0]["content"]
