"""Completion service contract — pluggable backend for real and stub LLMs."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

from pydantic import BaseModel, Field

from .config import ModelInfo
from .models import Message, ModelConfig

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class RequestConfig(BaseModel):
    """Sampling settings sent along with the messages."""

    model: str
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stream: bool = True

    @classmethod
    def from_model_config(
        cls, config: ModelConfig, *, stream: bool = True, **override: Any
    ) -> RequestConfig:
        values: dict[str, Any] = {
            "model": config.model,
            "temperature": config.temperature,
            "top_p": config.top_p,
            "max_tokens": config.max_tokens,
            "presence_penalty": config.presence_penalty,
            "frequency_penalty": config.frequency_penalty,
            "stream": stream,
        }
        values.update(override)
        return cls(**values)


class ChatRequest(BaseModel):
    """Request payload sent to the completion service."""

    messages: list[dict[str, Any]]
    config: RequestConfig

    @classmethod
    def build(cls, messages: list[Message], config: RequestConfig) -> ChatRequest:
        return cls(messages=[m.to_request() for m in messages], config=config)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ChatResponse(BaseModel):
    """Final (non-streamed) reply."""

    content: str
    model: str | None = None
    usage: TokenUsage | None = None


# ---------------------------------------------------------------------------
# ChatClient ABC
# ---------------------------------------------------------------------------


class ChatClient(ABC):
    """Abstract completion service.

    Streaming replies are async iterators of text deltas; cancelling the task
    that consumes the iterator is the abort signal.
    """

    @abstractmethod
    def name(self) -> str:
        """Return the canonical client name (e.g. 'openai', 'stub')."""

    @abstractmethod
    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Non-streaming completion."""

    @abstractmethod
    def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """Yield reply deltas as they arrive."""

    async def list_models(self) -> list[ModelInfo]:
        """Models the service currently offers. Empty if it cannot list them."""
        return []


# ---------------------------------------------------------------------------
# Stub implementation (for testing / offline development)
# ---------------------------------------------------------------------------


Responder = Callable[[ChatRequest], str]


class StubChatClient(ChatClient):
    """Returns canned replies without network access.

    *reply* is either a fixed string or a function of the request. Streams are
    split into *chunk_size* character deltas, sleeping *delay* seconds between
    them. If *error* is set, it is raised after *fail_after* deltas.
    """

    _CANNED = "This is a stub response for testing purposes."

    def __init__(
        self,
        reply: str | Responder | None = None,
        *,
        chunk_size: int = 8,
        delay: float = 0.0,
        error: BaseException | None = None,
        fail_after: int = 0,
    ) -> None:
        self._reply = reply
        self._chunk_size = max(1, chunk_size)
        self._delay = delay
        self._error = error
        self._fail_after = fail_after
        self.requests: list[ChatRequest] = []

    def name(self) -> str:
        return "stub"

    def _render(self, request: ChatRequest) -> str:
        if callable(self._reply):
            return self._reply(request)
        if self._reply is not None:
            return self._reply
        return f"{self._CANNED} (model={request.config.model})"

    async def complete(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        reply = self._render(request)
        prompt_tokens = sum(len(str(m.get("content", "")).split()) for m in request.messages)
        return ChatResponse(
            content=reply,
            model=request.config.model,
            usage=TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=len(reply.split())),
        )

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        reply = self._render(request)
        chunks = [
            reply[i : i + self._chunk_size] for i in range(0, len(reply), self._chunk_size)
        ]
        for sent, chunk in enumerate(chunks):
            if self._error is not None and sent >= self._fail_after:
                raise self._error
            await asyncio.sleep(self._delay)
            yield chunk
        if self._error is not None:
            raise self._error
