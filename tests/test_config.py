"""Tests for configuration, providers and the CLI"""

import json
from types import SimpleNamespace

import pytest
from pydantic import ValidationError
from typer.testing import CliRunner

from ctxkeep.config import Config, ContextConfig, TokenBudget
from ctxkeep.provider.base import complete, get_provider, resolve_model
from ctxkeep.session.thread import ThreadStore


class TestConfig:
    def test_defaults(self):
        config = ContextConfig()
        assert config.context_limit == 128000
        assert config.keep_recent_turns == 4
        assert config.protected_tools == ["ask_user", "update_plan", "create_plan"]
        assert config.summary_max_context_chars.for_mode("handoff") == 16000

    def test_budget(self):
        budget = TokenBudget(context_limit=1000, output_reserve=100, target_ratio=0.8)
        assert budget.usable_budget == 700
        assert budget.fits(700)
        assert not budget.fits(701)
        assert budget.ratio_for(400) == 0.5

    def test_invalid_ratio(self):
        with pytest.raises(ValidationError):
            ContextConfig(target_ratio=1.5)

    def test_invalid_turns(self):
        with pytest.raises(ValidationError):
            ContextConfig(deep_compression_turns=0)

    def test_load_and_save(self, temp_dir):
        path = temp_dir / "ctxkeep.json"
        path.write_text(json.dumps({
            "context": {"context_limit": 32000, "summary_mode": "background"},
            "summary_model": {"model": "gpt-4o-mini"},
        }))
        config = Config.load(path)
        assert config.context.context_limit == 32000
        assert config.context.summary_mode == "background"
        assert config.summary_model.model == "gpt-4o-mini"

        out = temp_dir / "nested" / "config.json"
        config.save(out)
        assert Config.load(out).context.context_limit == 32000

    def test_missing_file_gives_defaults(self, temp_dir):
        assert Config.load(temp_dir / "absent.json").context.context_limit == 128000


class TestProvider:
    def test_resolve_model(self):
        assert resolve_model("gpt-4o-mini") == ("openai", "gpt-4o-mini")
        assert resolve_model("anthropic/claude-x") == ("anthropic", "claude-x")
        assert resolve_model("claude-x") == ("anthropic", "claude-x")

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_provider("mystery/model")

    @pytest.mark.asyncio
    async def test_complete_collects_chunks(self, fake_provider):
        result = await complete(fake_provider(reply="hello world"), system="s", messages=[])
        assert result.ok
        assert result.content == "hello world"
        assert result.usage == {"input": 10, "output": 5}

    @pytest.mark.asyncio
    async def test_complete_never_raises(self, fake_provider):
        result = await complete(fake_provider(error=ConnectionError("refused")), system="s", messages=[])
        assert not result.ok
        assert result.error == "refused"

    @pytest.mark.asyncio
    async def test_openai_stream(self):
        from ctxkeep.provider.openai import OpenAIProvider

        captured = {}

        def chunk(text=None, usage=None):
            choices = [SimpleNamespace(delta=SimpleNamespace(content=text))] if text is not None else []
            return SimpleNamespace(choices=choices, usage=usage)

        async def create(**kwargs):
            captured.update(kwargs)

            async def gen():
                yield chunk("Hel")
                yield chunk("lo")
                yield chunk(usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2))

            return gen()

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        provider = OpenAIProvider("gpt-4o-mini", client=client)

        result = await complete(provider, system="sys", messages=[{"role": "user", "content": "hi"}], max_tokens=50)
        assert result.content == "Hello"
        assert result.usage == {"input": 7, "output": 2}
        assert captured["messages"][0] == {"role": "system", "content": "sys"}
        assert captured["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_anthropic_requires_key(self, monkeypatch):
        from ctxkeep.provider.anthropic import AnthropicProvider

        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        result = await complete(AnthropicProvider("claude-x"), system="s", messages=[])
        assert not result.ok
        assert "ANTHROPIC_API_KEY" in result.error

    def test_anthropic_message_conversion(self):
        from ctxkeep.provider.anthropic import AnthropicProvider

        converted = AnthropicProvider("claude-x", api_key="k")._convert_messages([
            {"role": "system", "content": "ignored"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": None},
        ])
        assert converted == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": ""}]


class TestCli:
    @pytest.fixture
    def runner(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        return CliRunner()

    def test_level(self, runner):
        from ctxkeep.cli import app

        result = runner.invoke(app, ["level", "0.9"])
        assert result.exit_code == 0
        assert "L3" in result.output
        assert "Deep Compression" in result.output

    def test_threads_empty(self, runner):
        from ctxkeep.cli import app

        result = runner.invoke(app, ["threads"])
        assert "No threads found" in result.output

    def test_stats_missing_thread(self, runner):
        from ctxkeep.cli import app

        result = runner.invoke(app, ["stats", "nope"])
        assert result.exit_code == 1
        assert "Thread not found" in result.output

    def test_assemble(self, runner, temp_dir, make_turn):
        from ctxkeep.cli import app

        store = ThreadStore()
        store.create(temp_dir, thread_id="t1")
        store.append("t1", *make_turn("Hello"))

        out = temp_dir / "wire.json"
        result = runner.invoke(app, ["assemble", "t1", "--message", "Next", "--output", str(out)])
        assert result.exit_code == 0
        assert "Full Context" in result.output
        wire = json.loads(out.read_text())
        assert wire[-1] == {"role": "user", "content": "Next"}
