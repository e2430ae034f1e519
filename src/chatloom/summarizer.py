"""Summarizer — session titles and the rolling memory digest.

Both jobs are best-effort: they run as background tasks after an assistant
reply is committed, and their failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from .client import ChatClient, ChatRequest, RequestConfig
from .composer import memory_prompt
from .constants import (
    DEFAULT_TOPIC,
    SUMMARIZE_MIN_LEN,
    SUMMARIZE_MODEL,
    SUMMARIZE_PROMPT,
    TOPIC_PROMPT,
)
from .events import ChatEvent, EventBus, EventKind
from .models import Message, Role, Session
from .store import ChatStore
from .telemetry import trace_summarize
from .template import trim_topic
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)


def get_summarize_model(current_model: str) -> str:
    """``gpt*`` sessions are summarized by the cheap summarize model."""
    if current_model.startswith("gpt"):
        return SUMMARIZE_MODEL
    return current_model


def count_tokens(messages: list[Message]) -> int:
    return sum(estimate_tokens(m.text) for m in messages)


@dataclass
class CompressionPlan:
    """What a memory compression would send, and where the index moves on success."""

    messages: list[Message]
    history_tokens: int
    next_summarized_index: int


def should_generate_title(session: Session, *, enabled: bool = True) -> bool:
    return (
        enabled
        and session.topic == DEFAULT_TOPIC
        and count_tokens(session.messages) >= SUMMARIZE_MIN_LEN
    )


def plan_compression(session: Session) -> CompressionPlan | None:
    """Return a plan when un-summarized history is over the compression threshold."""
    config = session.config
    summarize_index = max(session.last_summarized_index, session.cleared_context_index or 0)
    candidates = [m for m in session.messages if not m.is_error][summarize_index:]
    history_tokens = count_tokens(candidates)

    if not config.send_memory or history_tokens <= config.compress_message_length_threshold:
        return None

    if history_tokens > config.max_tokens:
        # count-based cut, not token-based
        candidates = candidates[max(0, len(candidates) - config.history_message_count) :]

    return CompressionPlan(
        messages=[memory_prompt(session), *candidates],
        history_tokens=history_tokens,
        next_summarized_index=len(session.messages),
    )


class Summarizer:
    """Schedules title generation and memory compression for a session."""

    def __init__(
        self,
        store: ChatStore,
        client: ChatClient,
        *,
        auto_generate_title: bool = True,
        events: EventBus | None = None,
        on_session_changed: Callable[[Session], None] | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.auto_generate_title = auto_generate_title
        self.events = events or EventBus()
        self._on_session_changed = on_session_changed
        self._title_inflight: set[str] = set()
        self._memory_inflight: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def summarize_session(self, session_id: str) -> list[asyncio.Task[None]]:
        """Start whichever of the two jobs is due; returns the started tasks."""
        session = self.store.get(session_id)
        if session is None:
            return []

        started: list[asyncio.Task[None]] = []
        if session_id not in self._title_inflight and should_generate_title(
            session, enabled=self.auto_generate_title
        ):
            self._title_inflight.add(session_id)
            started.append(
                self._spawn(self.generate_title(session_id), self._title_inflight, session_id)
            )

        if session_id not in self._memory_inflight:
            plan = plan_compression(session)
            if plan is not None:
                logger.info(
                    "Compressing history of %s: %d tokens over threshold %d",
                    session_id,
                    plan.history_tokens,
                    session.config.compress_message_length_threshold,
                )
                self._memory_inflight.add(session_id)
                job = self.compress_memory(session_id, plan)
                started.append(self._spawn(job, self._memory_inflight, session_id))
        return started

    def _spawn(
        self, coro: Coroutine[Any, Any, Any], inflight: set[str], session_id: str
    ) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task[None]) -> None:
            self._tasks.discard(t)
            inflight.discard(session_id)

        task.add_done_callback(_done)
        return task

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    # -- jobs ----------------------------------------------------------------

    async def generate_title(self, session_id: str) -> str | None:
        session = self.store.get(session_id)
        if session is None:
            return None
        messages = [*session.messages, Message(role=Role.USER, content=TOPIC_PROMPT)]
        request = ChatRequest.build(
            messages,
            RequestConfig(model=get_summarize_model(session.config.model), stream=False),
        )

        with trace_summarize(session_id, "title"):
            try:
                response = await self.client.complete(request)
            except Exception:
                logger.warning("Title generation failed for %s", session_id, exc_info=True)
                return None

        topic = trim_topic(response.content) if response.content else ""
        topic = topic or DEFAULT_TOPIC

        def _set_topic(s: Session) -> Session:
            s.topic = topic
            return s

        updated = self.store.update_session(session_id, _set_topic)
        if updated is not None:
            logger.info("Session %s titled %r", session_id, topic)
            self.events.emit(ChatEvent(EventKind.TOPIC_UPDATED, session_id, {"topic": topic}))
            self._changed(updated)
        return topic

    async def compress_memory(self, session_id: str, plan: CompressionPlan) -> str | None:
        session = self.store.get(session_id)
        if session is None:
            return None
        previous_digest = session.memory_digest
        messages = [*plan.messages, Message(role=Role.SYSTEM, content=SUMMARIZE_PROMPT, date=0.0)]
        config = RequestConfig.from_model_config(
            session.config,
            stream=True,
            model=get_summarize_model(session.config.model),
            max_tokens=None,
        )
        request = ChatRequest.build(messages, config)

        digest = ""
        with trace_summarize(session_id, "memory"):
            try:
                async for delta in self.client.stream(request):
                    digest += delta
                    self.store.update_session(session_id, _set_digest(digest))
            except asyncio.CancelledError:
                self.store.update_session(session_id, _set_digest(previous_digest))
                raise
            except Exception:
                logger.warning("Memory compression failed for %s", session_id, exc_info=True)
                self.store.update_session(session_id, _set_digest(previous_digest))
                return None

        if not digest:
            logger.warning("Memory compression for %s returned nothing", session_id)
            self.store.update_session(session_id, _set_digest(previous_digest))
            return None

        def _commit(s: Session) -> Session:
            s.memory_digest = digest
            s.last_summarized_index = min(plan.next_summarized_index, len(s.messages))
            return s

        updated = self.store.update_session(session_id, _commit)
        if updated is not None:
            logger.info(
                "Memory of %s compressed up to message %d",
                session_id,
                updated.last_summarized_index,
            )
            self.events.emit(
                ChatEvent(
                    EventKind.MEMORY_UPDATED,
                    session_id,
                    {"last_summarized_index": updated.last_summarized_index},
                )
            )
            self._changed(updated)
        return digest

    def _changed(self, session: Session) -> None:
        if self._on_session_changed is not None:
            self._on_session_changed(session)


def _set_digest(digest: str) -> Callable[[Session], None]:
    def _apply(session: Session) -> None:
        session.memory_digest = digest

    return _apply
