"""Message store — the single authoritative holder of all session state.

Every mutation goes through :meth:`ChatStore.update`: read the current
sessions, apply a change, replace the list and notify subscribers. Readers get
copies of the list, never the live one.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from .models import Message, Session, create_empty_session

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[["ChatStore"], None]


@dataclass
class StoreSnapshot:
    """Session list and selection at one point in time (for undo)."""

    sessions: list[Session]
    current_index: int
    taken_at: float = field(default_factory=time.monotonic)


class SessionNotFound(KeyError):
    pass


class ChatStore:
    """Ordered list of sessions plus the index of the selected one."""

    def __init__(self, sessions: Iterable[Session] | None = None) -> None:
        self._lock = threading.RLock()
        self._sessions: list[Session] = list(sessions or []) or [create_empty_session()]
        self._current_index = 0
        self._listeners: list[Listener] = []

    # -- reads ---------------------------------------------------------------

    @property
    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions)

    @property
    def current_index(self) -> int:
        with self._lock:
            return self._clamp(self._current_index)

    def _clamp(self, index: int) -> int:
        return min(len(self._sessions) - 1, max(0, index))

    def current_session(self) -> Session:
        """Selected session; an out-of-range index is clamped and stored back."""
        with self._lock:
            index = self._clamp(self._current_index)
            if index != self._current_index:
                logger.debug("Clamping current index %d -> %d", self._current_index, index)
                self._current_index = index
            return self._sessions[index]

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            for session in self._sessions:
                if session.id == session_id:
                    return session
            return None

    def index_of(self, session_id: str) -> int:
        with self._lock:
            for i, session in enumerate(self._sessions):
                if session.id == session_id:
                    return i
            return -1

    # -- the update path -----------------------------------------------------

    def update(self, mutator: Callable[[list[Session], int], tuple[list[Session], int] | None]) -> None:
        """Read-modify-replace under the store lock.

        *mutator* receives a copy of the session list and the current index and
        may return a new ``(sessions, index)`` pair; returning ``None`` keeps
        the (possibly mutated in place) copy and index.
        """
        with self._lock:
            sessions = list(self._sessions)
            index = self._current_index
            result = mutator(sessions, index)
            if result is not None:
                sessions, index = result
            if not sessions:
                sessions = [create_empty_session()]
                index = 0
            self._sessions = sessions
            self._current_index = min(len(sessions) - 1, max(0, index))
        self._notify()

    def update_session(self, session_id: str, updater: Callable[[Session], T]) -> T | None:
        """Apply *updater* to one session; ``None`` if it no longer exists.

        The session's message list is replaced by a copy so observers holding
        the old list see a new reference.
        """
        result: list[T] = []

        def _mutate(sessions: list[Session], index: int) -> None:
            for session in sessions:
                if session.id == session_id:
                    result.append(updater(session))
                    session.messages = list(session.messages)
                    session.last_update = time.time()
                    return

        with self._lock:
            if self.get(session_id) is None:
                logger.debug("Update for unknown session %s ignored", session_id)
                return None
            self.update(_mutate)
        return result[0] if result else None

    def append_messages(self, session_id: str, messages: list[Message]) -> None:
        def _append(session: Session) -> bool:
            session.messages = [*session.messages, *messages]
            return True

        if not self.update_session(session_id, _append):
            raise SessionNotFound(session_id)

    def update_message(
        self, session_id: str, message_id: str, updater: Callable[[Message], None]
    ) -> bool:
        """Apply *updater* to one message in place (its identity is kept)."""

        def _apply(session: Session) -> bool:
            found = session.find_message(message_id)
            if found is None:
                return False
            updater(found[1])
            return True

        return bool(self.update_session(session_id, _apply))

    def select(self, index: int) -> None:
        self.update(lambda sessions, _: (sessions, index))

    # -- snapshots -----------------------------------------------------------

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(list(self._sessions), self._current_index)

    def restore(self, snapshot: StoreSnapshot) -> None:
        self.update(lambda _s, _i: (list(snapshot.sessions), snapshot.current_index))

    # -- observers -----------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Store listener failed")
