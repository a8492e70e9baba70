"""
Provider factory and SSE stream tests. No network calls are made.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from providers import (
    SSE_DONE,
    ChatClient,
    ModelProvider,
    OllamaProvider,
    collect_stream,
    extract_json_from_text,
    get_provider,
    sse_frame,
)


class EchoProvider(ModelProvider):
    """Streams the last user message back in two chunks."""

    model = "echo"

    def __init__(self):
        self.calls = []

    async def stream(self, messages, system=None, max_tokens=4096, temperature=0.7):
        self.calls.append((messages, system, max_tokens))
        text = messages[-1]["content"]
        middle = len(text) // 2
        yield text[:middle]
        yield ""
        yield text[middle:]


async def frames(*chunks):
    for chunk in chunks:
        yield chunk


def test_extract_json_from_text():
    assert extract_json_from_text('Here:\n```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_json_from_text('prefix {"a": 1} suffix') == '{"a": 1}'
    assert extract_json_from_text("no json") == "no json"


@pytest.mark.asyncio
async def test_collect_stream_reassembles_split_frames():
    stream = sse_frame("Hello, ") + sse_frame("세계") + f"data: {SSE_DONE}\n\n"
    pieces = [stream[i:i + 5] for i in range(0, len(stream), 5)]

    assert await collect_stream(frames(*pieces)) == "Hello, 세계"


@pytest.mark.asyncio
async def test_collect_stream_skips_noise():
    text = await collect_stream(frames(
        ": keep-alive\n\n",
        "data: not json\n\n",
        'data: {"other": 1}\n\n',
        sse_frame("ok"),
    ))
    assert text == "ok"


@pytest.mark.asyncio
async def test_chat_client_streams_frames():
    provider = EchoProvider()
    chat = ChatClient(provider, system="be brief", max_tokens=256)
    history = [{"role": "assistant", "content": "earlier"}]

    collected = [frame async for frame in chat.complete("ping pong", history)]

    assert collected[-1] == f"data: {SSE_DONE}\n\n"
    assert len(collected) == 3
    assert await collect_stream(frames(*collected)) == "ping pong"
    messages, system, max_tokens = provider.calls[0]
    assert messages[0] == history[0]
    assert messages[-1] == {"role": "user", "content": "ping pong"}
    assert (system, max_tokens) == ("be brief", 256)
    assert len(history) == 1


def test_get_provider_ollama():
    provider = get_provider(
        {"models": {"local": {"provider": "ollama", "model": "llama3"}}}, "local"
    )
    assert isinstance(provider, OllamaProvider)
    assert provider.model == "llama3"


def test_get_provider_unknown_model():
    with pytest.raises(ValueError):
        get_provider({"models": {}}, "nope")


def test_get_provider_missing_key(monkeypatch):
    monkeypatch.delenv("PLANRUNNER_TEST_KEY", raising=False)
    config = {"models": {"claude": {
        "provider": "anthropic", "model": "claude-x", "api_key_env": "PLANRUNNER_TEST_KEY",
    }}}
    with pytest.raises(ValueError):
        get_provider(config, "claude")
