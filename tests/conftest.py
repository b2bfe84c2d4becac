"""Pytest configuration and shared fixtures"""

import asyncio
import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Set test storage directory to avoid polluting user data
os.environ["CTXKEEP_DATA_DIR"] = tempfile.mkdtemp()

from ctxkeep.provider.base import Provider, StreamChunk
from ctxkeep.session.message import AssistantMessage, ToolCall, ToolResultMessage, UserMessage


@pytest.fixture(autouse=True)
def clean_storage():
    """Clean storage before each test"""
    from ctxkeep.storage.storage import Storage

    # Use a fresh temp dir for each test
    Storage.BASE_DIR = Path(tempfile.mkdtemp())
    yield


class FakeProvider(Provider):
    """Scripted provider: replies with `reply`, raises `error`, or hangs"""

    def __init__(self, reply: str = "", error: Exception | None = None, hang: bool = False, gate: asyncio.Event | None = None):
        self.model = "fake"
        self.reply = reply
        self.error = error
        self.hang = hang
        self.gate = gate
        self.calls: list[dict] = []

    async def stream(self, system, messages, max_tokens=None, temperature=None):
        self.calls.append({"system": system, "messages": messages})
        if self.gate is not None:
            await self.gate.wait()
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        # Split the reply to exercise chunk collection
        half = len(self.reply) // 2
        yield StreamChunk(type="text", content=self.reply[:half])
        yield StreamChunk(type="text", content=self.reply[half:])
        yield StreamChunk(type="usage", usage={"input": 10, "output": 5})


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def make_turn():
    """Build one user turn: request, a tool call with its result, and a reply"""

    def _make(
        request: str,
        tool: str = "read_file",
        args: dict | None = None,
        result: str = "ok",
        status: str = "success",
        reply: str = "Done.",
    ):
        call_id = f"call_{uuid.uuid4().hex[:8]}"
        return [
            UserMessage(content=request),
            AssistantMessage(tool_calls=[ToolCall(id=call_id, name=tool, arguments=args or {}, status=status)]),
            ToolResultMessage(tool_call_id=call_id, name=tool, content=result),
            AssistantMessage(content=reply),
        ]

    return _make


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
