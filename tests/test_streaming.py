"""Tests for the streaming controller state machine and the controller pool."""

from __future__ import annotations

import asyncio

import pytest

from chatloom.client import ChatRequest, RequestConfig, StubChatClient
from chatloom.errors import AbortedByUser, ChatError, ProviderError, TransientNetworkError
from chatloom.streaming import (
    ControllerPool,
    StreamCallbacks,
    StreamingController,
    StreamState,
    controller_key,
)


class Recorder:
    def __init__(self) -> None:
        self.updates: list[str] = []
        self.finished: list[str] = []
        self.errors: list[ChatError] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_update=lambda text, _delta: self.updates.append(text),
            on_finish=self.finished.append,
            on_error=self.errors.append,
        )


def _request() -> ChatRequest:
    return ChatRequest(messages=[{"role": "user", "content": "hi"}], config=RequestConfig(model="m"))


@pytest.mark.asyncio
async def test_stream_runs_to_finished():
    controller = StreamingController(StubChatClient("hello world", chunk_size=5))
    rec = Recorder()
    handle = controller.start("s1", "m1", _request(), rec.callbacks())
    assert handle.state == StreamState.PENDING
    assert controller.pool.get("s1", "m1") is handle

    assert await handle.wait() == StreamState.FINISHED
    assert rec.updates == ["hello", "hello worl", "hello world"]
    assert rec.finished == ["hello world"]
    assert rec.errors == []
    assert controller.pool.get("s1", "m1") is None


@pytest.mark.asyncio
async def test_stream_failure_is_classified():
    client = StubChatClient("abc", chunk_size=1, error=ConnectionResetError("reset by peer"), fail_after=1)
    controller = StreamingController(client)
    rec = Recorder()
    handle = controller.start("s1", "m1", _request(), rec.callbacks())

    assert await handle.wait() == StreamState.FAILED
    assert rec.updates == ["a"]
    assert isinstance(rec.errors[0], TransientNetworkError)
    assert not handle.aborted
    assert len(controller.pool) == 0


@pytest.mark.asyncio
async def test_transient_errors_pass_through():
    client = StubChatClient("abc", error=TransientNetworkError("timeout"))
    rec = Recorder()
    handle = StreamingController(client).start("s", "m", _request(), rec.callbacks())
    await handle.wait()
    assert isinstance(handle.error, TransientNetworkError)


@pytest.mark.asyncio
async def test_abort_mid_stream():
    controller = StreamingController(StubChatClient("x" * 100, chunk_size=1, delay=0.01))
    rec = Recorder()
    handle = controller.start("s1", "m1", _request(), rec.callbacks())
    while len(rec.updates) < 3:
        await asyncio.sleep(0.005)

    assert controller.pool.stop("s1", "m1") is True
    assert await handle.wait() == StreamState.FAILED
    assert handle.aborted
    assert isinstance(rec.errors[0], AbortedByUser)
    assert rec.finished == []
    updates_at_abort = len(rec.updates)
    await asyncio.sleep(0.05)
    assert len(rec.updates) == updates_at_abort
    assert controller.pool.get("s1", "m1") is None


@pytest.mark.asyncio
async def test_abort_before_first_step_still_fails_cleanly():
    controller = StreamingController(StubChatClient("hello"))
    rec = Recorder()
    handle = controller.start("s1", "m1", _request(), rec.callbacks())
    assert handle.abort() is True
    assert await handle.wait() == StreamState.FAILED
    assert handle.aborted
    assert len(rec.errors) == 1
    assert len(controller.pool) == 0


@pytest.mark.asyncio
async def test_abort_after_finish_is_noop():
    controller = StreamingController(StubChatClient("hi"))
    rec = Recorder()
    handle = controller.start("s1", "m1", _request(), rec.callbacks())
    await handle.wait()
    assert handle.abort() is False
    assert handle.state == StreamState.FINISHED


@pytest.mark.asyncio
async def test_new_handle_for_same_key_replaces_and_cancels_old():
    controller = StreamingController(StubChatClient("y" * 50, chunk_size=1, delay=0.01))
    first_rec, second_rec = Recorder(), Recorder()
    first = controller.start("s1", "m1", _request(), first_rec.callbacks())
    second = controller.start("s1", "m1", _request(), second_rec.callbacks())

    assert await first.wait() == StreamState.FAILED
    assert first.aborted
    assert controller.pool.get("s1", "m1") is second
    assert await second.wait() == StreamState.FINISHED
    assert len(controller.pool) == 0


@pytest.mark.asyncio
async def test_sessions_are_independent():
    controller = StreamingController(StubChatClient("z" * 40, chunk_size=1, delay=0.005))
    a_rec, b_rec = Recorder(), Recorder()
    a = controller.start("a", "m", _request(), a_rec.callbacks())
    b = controller.start("b", "m", _request(), b_rec.callbacks())
    await asyncio.sleep(0.02)
    assert controller.pool.stop_session("a") == 1
    assert await a.wait() == StreamState.FAILED
    assert await b.wait() == StreamState.FINISHED
    assert b_rec.finished == ["z" * 40]


@pytest.mark.asyncio
async def test_stop_all():
    controller = StreamingController(StubChatClient("q" * 40, chunk_size=1, delay=0.01))
    handles = [controller.start(f"s{i}", "m", _request(), Recorder().callbacks()) for i in range(3)]
    assert controller.pool.has_pending()
    assert controller.pool.stop_all() == 3
    for handle in handles:
        assert await handle.wait() == StreamState.FAILED
    assert not controller.pool.has_pending()


def test_pool_remove_only_matching_handle():
    pool = ControllerPool()
    sentinel = object()
    pool._handles[controller_key("s", "m")] = sentinel  # type: ignore[assignment]
    pool.remove("s", "m", handle=None)
    assert pool.get("s", "m") is None


def test_stop_unknown_key_returns_false():
    assert ControllerPool().stop("s", "m") is False


@pytest.mark.asyncio
async def test_malformed_reply_becomes_provider_error():
    client = StubChatClient("abc", error=KeyError("choices"))
    rec = Recorder()
    handle = StreamingController(client).start("s", "m", _request(), rec.callbacks())
    await handle.wait()
    assert isinstance(rec.errors[0], ProviderError)
