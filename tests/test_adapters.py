"""Tests for consultants/adapters -- local subprocesses and mocked SDK clients, no network."""

import asyncio
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from consultants.adapters.anthropic import AnthropicAdapter
from consultants.adapters.base import compose_prompt
from consultants.adapters.command import CommandAdapter
from consultants.adapters.gemini import GeminiAdapter
from consultants.adapters.openai_compat import OpenAICompatAdapter
from consultants.errors import AgentProcessError, AgentTimeout
from tests.conftest import make_spec


def _python(code: str) -> tuple[str, ...]:
    return (sys.executable, "-c", code)


def test_compose_prompt_without_context():
    assert compose_prompt("Q?", None) == "Q?"


def test_compose_prompt_prepends_context():
    composed = compose_prompt("Q?", "file body")
    assert composed.startswith("file body")
    assert composed.endswith("# Additional Question\nQ?")


async def test_command_adapter_pipes_prompt_over_stdin():
    adapter = CommandAdapter(make_spec("echo", command=_python("import sys; print(sys.stdin.read().upper())")))
    output = await adapter.invoke("hello", None, timeout=30)
    assert output.raw.strip() == "HELLO"
    assert output.exit_status == 0


async def test_command_adapter_sends_context_first():
    adapter = CommandAdapter(make_spec("echo", command=_python("import sys; print(sys.stdin.read())")))
    output = await adapter.invoke("the question", "the context", timeout=30)
    assert output.raw.index("the context") < output.raw.index("the question")


async def test_command_adapter_reports_exit_status():
    adapter = CommandAdapter(make_spec("bad", command=_python("import sys; print('partial'); sys.exit(3)")))
    output = await adapter.invoke("x", None, timeout=30)
    assert output.exit_status == 3
    assert "partial" in output.raw


async def test_command_adapter_timeout():
    adapter = CommandAdapter(make_spec("slow", command=_python("import time; time.sleep(30)")))
    with pytest.raises(AgentTimeout):
        await adapter.invoke("x", None, timeout=0.2)


async def test_command_adapter_missing_binary():
    adapter = CommandAdapter(make_spec("ghost", command=("no-such-binary-for-tests",)))
    with pytest.raises(AgentProcessError, match="Could not start"):
        await adapter.invoke("x", None, timeout=5)


def test_command_adapter_requires_command():
    with pytest.raises(AgentProcessError):
        CommandAdapter(make_spec("empty", command=()))


@pytest.mark.parametrize("adapter_cls", [AnthropicAdapter, OpenAICompatAdapter, GeminiAdapter])
def test_http_adapters_require_api_key(adapter_cls, monkeypatch):
    monkeypatch.delenv("TEST_CONSULTANTS_KEY", raising=False)
    spec = make_spec("http", adapter="openai", api_key_env="TEST_CONSULTANTS_KEY", command=())
    with pytest.raises(AgentProcessError, match="Missing API key"):
        adapter_cls(spec)


@pytest.fixture
def openai_adapter(monkeypatch) -> OpenAICompatAdapter:
    monkeypatch.setenv("TEST_CONSULTANTS_KEY", "sk-test")
    spec = make_spec("grok", adapter="openai", api_key_env="TEST_CONSULTANTS_KEY",
                     base_url="https://api.x.ai/v1", command=())
    adapter = OpenAICompatAdapter(spec)
    adapter._client = MagicMock()
    return adapter


async def test_openai_adapter_returns_message_content(openai_adapter):
    reply = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content='{"response": {}}'))],
        usage=SimpleNamespace(total_tokens=42),
    )
    openai_adapter._client.chat.completions.create = AsyncMock(return_value=reply)

    output = await openai_adapter.invoke("Q", None, timeout=5)

    assert output.raw == '{"response": {}}'
    assert output.tokens_used == 42
    sent = openai_adapter._client.chat.completions.create.await_args.kwargs
    assert sent["model"] == "grok-model"


async def test_openai_adapter_wraps_sdk_errors(openai_adapter):
    openai_adapter._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("429 Too Many Requests"))
    with pytest.raises(AgentProcessError, match="429"):
        await openai_adapter.invoke("Q", None, timeout=5)


async def test_openai_adapter_timeout(openai_adapter):
    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    openai_adapter._client.chat.completions.create = AsyncMock(side_effect=hang)
    with pytest.raises(AgentTimeout):
        await openai_adapter.invoke("Q", None, timeout=0.05)


async def test_anthropic_adapter_joins_text_blocks(monkeypatch):
    monkeypatch.setenv("TEST_CONSULTANTS_KEY", "sk-ant-test")
    adapter = AnthropicAdapter(make_spec("claude", adapter="anthropic", api_key_env="TEST_CONSULTANTS_KEY", command=()))
    adapter._client = MagicMock()
    adapter._client.messages.create = AsyncMock(return_value=SimpleNamespace(
        content=[SimpleNamespace(type="text", text="part one"), SimpleNamespace(type="tool_use", text="x"),
                 SimpleNamespace(type="text", text="part two")],
        usage=SimpleNamespace(input_tokens=10, output_tokens=5),
    ))

    output = await adapter.invoke("Q", None, timeout=5)

    assert output.raw == "part one\npart two"
    assert output.tokens_used == 15
