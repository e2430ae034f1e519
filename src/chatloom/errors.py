"""Error taxonomy for completion, summarization and persistence failures."""

from __future__ import annotations

import asyncio
import json

import httpx
import requests

_TRANSIENT = (
    httpx.TransportError,
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
)


class ChatError(Exception):
    """Base class for all chatloom errors."""


class TransientNetworkError(ChatError):
    """Network hiccup or overloaded upstream. Retryable by the user, never automatically."""


class AbortedByUser(ChatError):
    """The user stopped the request. Not an error state."""

    def __init__(self, message: str = "The request was aborted by the user") -> None:
        super().__init__(message)


class ProviderError(ChatError):
    """The completion service rejected the request or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


ModelRefusal = ProviderError


class PersistenceError(ChatError):
    """A repository write or read failed. Never rolls back in-memory state."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Persistence operation '{operation}' failed{detail}")
        self.operation = operation
        self.cause = cause


def is_abort(exc: BaseException) -> bool:
    """True if *exc* signals a deliberate cancellation rather than a failure."""
    if isinstance(exc, AbortedByUser | asyncio.CancelledError):
        return True
    return "aborted" in str(exc).lower()


def classify_error(exc: BaseException) -> ChatError:
    """Map an arbitrary exception raised by a client into the taxonomy."""
    if isinstance(exc, ChatError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return AbortedByUser()
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429 or status >= 500:
            return TransientNetworkError(f"HTTP {status} from completion service")
        return ProviderError(f"HTTP {status}: {exc.response.text[:500]}", status_code=status)
    if isinstance(exc, _TRANSIENT):
        return TransientNetworkError(str(exc) or type(exc).__name__)
    if isinstance(exc, json.JSONDecodeError | KeyError | ValueError):
        return ProviderError(f"Malformed response: {exc}")
    if is_abort(exc):
        return AbortedByUser(str(exc))
    return ProviderError(str(exc) or type(exc).__name__)


def pretty_error(exc: BaseException) -> str:
    """Render the diagnostic block appended to a failed reply."""
    body = json.dumps({"error": True, "message": str(exc)}, indent=2, ensure_ascii=False)
    return f"```json\n{body}\n```"
