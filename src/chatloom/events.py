"""Chat events and a tiny synchronous event bus (observers / toast notifications)."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    MESSAGE_COMMITTED = "message_committed"
    SESSION_DELETED = "session_deleted"
    TOPIC_UPDATED = "topic_updated"
    MEMORY_UPDATED = "memory_updated"
    PERSISTENCE_FAILED = "persistence_failed"
    NOTICE = "notice"


@dataclass
class ChatEvent:
    """Something observers may want to react to."""

    kind: EventKind
    session_id: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Handler = Callable[[ChatEvent], None]


class EventBus:
    """Dispatches events to handlers registered per kind (or for all kinds).

    A failing handler is logged and skipped; it never breaks the emitter.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind | None, list[Handler]] = defaultdict(list)
        self._history: list[ChatEvent] = []
        self._history_limit = 200

    def subscribe(self, handler: Handler, kind: EventKind | None = None) -> Callable[[], None]:
        """Register *handler*; returns a function that unregisters it."""
        self._handlers[kind].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers[kind]:
                self._handlers[kind].remove(handler)

        return _unsubscribe

    def emit(self, event: ChatEvent) -> None:
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]
        for handler in [*self._handlers[event.kind], *self._handlers[None]]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.kind)

    def notice(self, text: str, session_id: str = "") -> None:
        """Transient user-facing notification."""
        self.emit(ChatEvent(EventKind.NOTICE, session_id, {"text": text}))

    def history(self, kind: EventKind | None = None) -> list[ChatEvent]:
        if kind is None:
            return list(self._history)
        return [e for e in self._history if e.kind == kind]
