"""Streaming session controller — one state machine per in-flight request.

Transitions::

    PENDING -> STREAMING -> FINISHED
        \\          \\
         `----------`-> FAILED   (error, or aborted by the user)

Every live request is registered in a :class:`ControllerPool` under
``(session_id, message_id)`` so a UI "stop" action can abort it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .client import ChatClient, ChatRequest
from .errors import AbortedByUser, ChatError, classify_error, is_abort

logger = logging.getLogger(__name__)


class StreamState(StrEnum):
    PENDING = "pending"
    STREAMING = "streaming"
    FINISHED = "finished"
    FAILED = "failed"


_TERMINAL = frozenset({StreamState.FINISHED, StreamState.FAILED})


@dataclass
class StreamCallbacks:
    """Hooks fired by a :class:`StreamHandle` as it changes state.

    ``on_update`` gets the full text so far and the latest delta.
    """

    on_update: Callable[[str, str], None]
    on_finish: Callable[[str], None]
    on_error: Callable[[ChatError], None]


def controller_key(session_id: str, message_id: str) -> str:
    return f"{session_id},{message_id}"


class StreamHandle:
    """Cancellation handle and state of one streaming request."""

    def __init__(self, session_id: str, message_id: str, callbacks: StreamCallbacks) -> None:
        self.session_id = session_id
        self.message_id = message_id
        self.state = StreamState.PENDING
        self.text = ""
        self.error: ChatError | None = None
        self._callbacks = callbacks
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"StreamHandle({self.key!r}, state={self.state})"

    @property
    def key(self) -> str:
        return controller_key(self.session_id, self.message_id)

    @property
    def done(self) -> bool:
        return self.state in _TERMINAL

    @property
    def aborted(self) -> bool:
        return self.state == StreamState.FAILED and self.error is not None and is_abort(self.error)

    def abort(self) -> bool:
        """Request cancellation. Returns False if the request already ended."""
        if self.done or self._task is None:
            return False
        logger.info("Aborting stream %s", self.key)
        return self._task.cancel()

    async def wait(self) -> StreamState:
        """Block until the request reaches a terminal state."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.state

    # -- transitions (called by the controller) -------------------------------

    def _attach(self, task: asyncio.Task[None]) -> None:
        self._task = task
        task.add_done_callback(self._on_task_done)

    def _update(self, delta: str) -> None:
        if self.done:
            return
        self.state = StreamState.STREAMING
        self.text += delta
        self._callbacks.on_update(self.text, delta)

    def _finish(self) -> None:
        if self.done:
            return
        self.state = StreamState.FINISHED
        self._callbacks.on_finish(self.text)

    def _fail(self, error: ChatError) -> None:
        if self.done:
            return
        self.state = StreamState.FAILED
        self.error = error
        self._callbacks.on_error(error)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        # cancelled before the coroutine ever ran
        if task.cancelled():
            self._fail(AbortedByUser())


class ControllerPool:
    """Registry of live stream handles keyed by ``(session_id, message_id)``."""

    def __init__(self) -> None:
        self._handles: dict[str, StreamHandle] = {}

    def add_controller(self, session_id: str, message_id: str, handle: StreamHandle) -> None:
        """Register *handle*; a live handle under the same key is aborted first."""
        key = controller_key(session_id, message_id)
        previous = self._handles.get(key)
        if previous is not None and previous is not handle:
            logger.info("Replacing live stream %s", key)
            previous.abort()
        self._handles[key] = handle

    def remove(self, session_id: str, message_id: str, handle: StreamHandle | None = None) -> None:
        """Drop the handle under the key (only if it is *handle*, when given)."""
        key = controller_key(session_id, message_id)
        current = self._handles.get(key)
        if current is not None and (handle is None or current is handle):
            del self._handles[key]

    def get(self, session_id: str, message_id: str) -> StreamHandle | None:
        return self._handles.get(controller_key(session_id, message_id))

    def stop(self, session_id: str, message_id: str) -> bool:
        handle = self.get(session_id, message_id)
        return handle.abort() if handle is not None else False

    def stop_session(self, session_id: str) -> int:
        stopped = 0
        for handle in list(self._handles.values()):
            if handle.session_id == session_id and handle.abort():
                stopped += 1
        return stopped

    def stop_all(self) -> int:
        return sum(1 for handle in list(self._handles.values()) if handle.abort())

    def has_pending(self) -> bool:
        return bool(self._handles)

    def handles(self) -> list[StreamHandle]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)


class StreamingController:
    """Runs streaming requests against a client and tracks them in the pool."""

    def __init__(self, client: ChatClient, pool: ControllerPool | None = None) -> None:
        self.client = client
        self.pool = pool or ControllerPool()

    def start(
        self,
        session_id: str,
        message_id: str,
        request: ChatRequest,
        callbacks: StreamCallbacks,
        *,
        register: bool = True,
    ) -> StreamHandle:
        """Dispatch *request* and return its handle without waiting.

        Must be called from a running event loop.
        """
        handle = StreamHandle(session_id, message_id, callbacks)
        task = asyncio.get_running_loop().create_task(
            self._run(handle, request),
            name=f"stream:{handle.key}",
        )
        handle._attach(task)
        if register:
            self.pool.add_controller(session_id, message_id, handle)
            task.add_done_callback(
                lambda _t: self.pool.remove(session_id, message_id, handle)
            )
        return handle

    async def _run(self, handle: StreamHandle, request: ChatRequest) -> None:
        try:
            async for delta in self.client.stream(request):
                handle._update(delta)
        except asyncio.CancelledError:
            # our own task: an abort is a terminal state, not a crash
            handle._fail(AbortedByUser())
        except Exception as exc:
            error = classify_error(exc)
            logger.error("Stream %s failed: %s", handle.key, error, exc_info=exc)
            handle._fail(error)
        else:
            handle._finish()
