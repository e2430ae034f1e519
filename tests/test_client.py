"""Tests for the completion contract types and the stub client."""

from __future__ import annotations

import pytest

from chatloom.client import ChatRequest, RequestConfig, StubChatClient
from chatloom.errors import TransientNetworkError
from chatloom.models import Message, ModelConfig, Role


def _request(stream: bool = True) -> ChatRequest:
    return ChatRequest.build(
        [Message(role=Role.USER, content="hi there")],
        RequestConfig(model="gpt-4o-mini", stream=stream),
    )


def test_request_config_from_model_config():
    cfg = ModelConfig(model="gpt-4o", temperature=0.2, max_tokens=300)
    rc = RequestConfig.from_model_config(cfg, stream=False)
    assert rc.model == "gpt-4o"
    assert rc.temperature == 0.2
    assert rc.max_tokens == 300
    assert rc.stream is False


def test_request_config_override_drops_max_tokens():
    rc = RequestConfig.from_model_config(ModelConfig(), max_tokens=None, model="other")
    assert rc.max_tokens is None
    assert rc.model == "other"
    assert "max_tokens" not in rc.model_dump(exclude_none=True)


def test_chat_request_build_serializes_messages():
    req = _request()
    assert req.messages == [{"role": "user", "content": "hi there"}]


@pytest.mark.asyncio
async def test_stub_complete_is_deterministic():
    client = StubChatClient()
    first = await client.complete(_request(stream=False))
    second = await client.complete(_request(stream=False))
    assert first.content == second.content
    assert "gpt-4o-mini" in first.content
    assert first.usage.prompt_tokens == 2
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_stub_lists_no_models():
    assert await StubChatClient().list_models() == []


@pytest.mark.asyncio
async def test_stub_stream_chunks_reply():
    client = StubChatClient("abcdefghij", chunk_size=4)
    chunks = [c async for c in client.stream(_request())]
    assert chunks == ["abcd", "efgh", "ij"]


@pytest.mark.asyncio
async def test_stub_stream_fails_after_n_chunks():
    client = StubChatClient("abcdefghij", chunk_size=2, error=TransientNetworkError("reset"), fail_after=2)
    received: list[str] = []
    with pytest.raises(TransientNetworkError):
        async for chunk in client.stream(_request()):
            received.append(chunk)
    assert received == ["ab", "cd"]


@pytest.mark.asyncio
async def test_stub_reply_function_sees_request():
    client = StubChatClient(lambda req: f"{len(req.messages)} messages")
    response = await client.complete(_request())
    assert response.content == "1 messages"
