"""OpenAI-compatible completion client over HTTP with server-sent-event streaming."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx

from .client import ChatClient, ChatRequest, ChatResponse, TokenUsage
from .config import ModelInfo
from .errors import ProviderError

logger = logging.getLogger(__name__)

_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"


class OpenAIChatClient(ChatClient):
    """Talks to any ``/chat/completions`` endpoint that follows the OpenAI format.

    Pass *transport* to route requests somewhere other than the network
    (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def name(self) -> str:
        return "openai"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _payload(self, request: ChatRequest, *, stream: bool) -> dict[str, Any]:
        payload = request.config.model_dump(exclude_none=True)
        payload["stream"] = stream
        payload["messages"] = request.messages
        return payload

    async def list_models(self) -> list[ModelInfo]:
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}/models", headers=self._headers())
            resp.raise_for_status()
            data = resp.json()

        try:
            ids = [item["id"] for item in data["data"]]
        except (KeyError, TypeError) as exc:
            msg = f"Unexpected model list payload: {str(data)[:200]}"
            raise ProviderError(msg) from exc
        logger.debug("Service lists %d models", len(ids))
        return [ModelInfo(name=model_id) for model_id in ids]

    async def complete(self, request: ChatRequest) -> ChatResponse:
        url = f"{self.base_url}/chat/completions"
        payload = self._payload(request, stream=False)
        start = time.monotonic()
        logger.debug(
            "Completion request: model=%s, %d messages", payload["model"], len(request.messages)
        )

        async with self._client() as client:
            resp = await client.post(url, json=payload, headers=self._headers())
            resp.raise_for_status()
            data = resp.json()

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            msg = f"Unexpected completion payload: {str(data)[:200]}"
            raise ProviderError(msg) from exc

        usage = data.get("usage") or {}
        logger.info(
            "Completion finished: model=%s, prompt_tokens=%s, completion_tokens=%s, %.0fms",
            data.get("model", payload["model"]),
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
            (time.monotonic() - start) * 1000,
        )
        return ChatResponse(
            content=content,
            model=data.get("model", payload["model"]),
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
            ),
        )

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        url = f"{self.base_url}/chat/completions"
        payload = self._payload(request, stream=True)
        start = time.monotonic()
        received = 0
        logger.debug(
            "Stream request: model=%s, %d messages", payload["model"], len(request.messages)
        )

        async with self._client() as client, client.stream(
            "POST", url, json=payload, headers=self._headers()
        ) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith(_SSE_PREFIX):
                    continue
                data_str = line[len(_SSE_PREFIX) :].strip()
                if data_str == _SSE_DONE:
                    break
                try:
                    chunk = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed SSE chunk: %s", data_str[:100])
                    continue

                if chunk.get("error"):
                    raise ProviderError(str(chunk["error"].get("message", chunk["error"])))

                choices = chunk.get("choices") or []
                if not choices:
                    continue
                delta = (choices[0].get("delta") or {}).get("content")
                if delta:
                    received += len(delta)
                    yield delta

        logger.info(
            "Stream finished: model=%s, %d chars, %.0fms",
            payload["model"],
            received,
            (time.monotonic() - start) * 1000,
        )
