"""Session manager — the façade the UI talks to.

Owns the :class:`ChatStore` and wires user input through the composer, the
streaming controller, persistence and the summarizer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .client import ChatClient, ChatRequest, RequestConfig
from .composer import compose
from .config import AppConfig, ModelInfo, merge_models
from .constants import ABORTED_MARKER
from .errors import ChatError, PersistenceError, classify_error, is_abort, pretty_error
from .events import ChatEvent, EventBus, EventKind
from .models import BOT_HELLO, ContentPart, Mask, Message, Role, Session, create_empty_session
from .repository import PersistenceWriter, SessionRepository
from .store import ChatStore, StoreSnapshot
from .streaming import ControllerPool, StreamCallbacks, StreamHandle, StreamingController
from .summarizer import Summarizer
from .telemetry import trace_chat_turn
from .template import fill_template
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class PendingDeletion:
    """A deleted session that can still be brought back until ``expires_at``."""

    session: Session
    snapshot: StoreSnapshot
    expires_at: float
    committed: bool = False
    timer: asyncio.TimerHandle | None = None


class SessionManager:
    """Create, select and delete sessions; run chat turns."""

    def __init__(
        self,
        client: ChatClient,
        *,
        config: AppConfig | None = None,
        store: ChatStore | None = None,
        repository: SessionRepository | None = None,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or ChatStore()
        self.events = events or EventBus()
        self.controller = StreamingController(client)
        self.writer = PersistenceWriter(repository, self.events) if repository else None
        self.summarizer = Summarizer(
            self.store,
            client,
            auto_generate_title=self.config.auto_generate_title,
            events=self.events,
            on_session_changed=self._persist_session,
        )
        self._clock = clock
        self._deletions: list[PendingDeletion] = []

    @property
    def pool(self) -> ControllerPool:
        return self.controller.pool

    # -- sessions ------------------------------------------------------------

    def load(self) -> int:
        """Replace the in-memory sessions with the repository's. Returns the count loaded."""
        if self.writer is None:
            return 0
        try:
            sessions = self.writer.repository.list_sessions()
        except Exception as exc:
            error = exc if isinstance(exc, PersistenceError) else PersistenceError("list", exc)
            logger.error("Loading sessions failed: %s", error, exc_info=exc)
            self.events.emit(
                ChatEvent(EventKind.PERSISTENCE_FAILED, payload={"op": "list", "error": str(error)})
            )
            return 0
        if sessions:
            self.store.update(lambda _s, _i: (sessions, 0))
        else:
            # nothing stored yet: the in-memory sessions become the first ones saved
            for session in self.store.sessions:
                self.writer.create_session(session)
        logger.info("Loaded %d sessions", len(sessions))
        return len(sessions)

    def current_session(self) -> Session:
        return self.store.current_session()

    def select_session(self, index: int) -> Session:
        self.store.select(index)
        return self.store.current_session()

    def new_session(self, mask: Mask | None = None) -> Session:
        """Start a session (seeded from *mask* if given) at the top of the list and select it."""
        self._commit_expired_deletions()
        session = create_empty_session(mask)
        self.store.update(lambda sessions, _: ([session, *sessions], 0))
        logger.info("New session %s (%s)", session.id, session.topic)
        if self.writer is not None:
            self.writer.create_session(session)
        return session

    def delete_session(self, index: int) -> PendingDeletion | None:
        """Remove the session at *index*; it can be restored with :meth:`undo_delete`.

        Deleting the only session leaves a fresh empty one in its place.
        """
        self._commit_expired_deletions()
        sessions = self.store.sessions
        if not 0 <= index < len(sessions):
            return None

        snapshot = self.store.snapshot()
        deleted = sessions[index]
        replacement: list[Session] = []

        def _remove(current: list[Session], current_index: int) -> tuple[list[Session], int]:
            deleting_last = len(current) == 1
            del current[index]
            next_index = min(current_index - int(index < current_index), len(current) - 1)
            if deleting_last:
                replacement.append(create_empty_session())
                current.append(replacement[0])
                next_index = 0
            return current, next_index

        self.store.update(_remove)
        self.pool.stop_session(deleted.id)
        if replacement and self.writer is not None:
            self.writer.create_session(replacement[0])

        pending = PendingDeletion(
            session=deleted,
            snapshot=snapshot,
            expires_at=self._clock() + self.config.undo_window,
        )
        self._deletions.append(pending)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            pending.timer = loop.call_later(
                self.config.undo_window, self._commit_deletion, pending
            )

        logger.info("Deleted session %s at index %d", deleted.id, index)
        self.events.emit(
            ChatEvent(EventKind.SESSION_DELETED, deleted.id, {"index": index})
        )
        self.events.notice("Conversation deleted", deleted.id)
        return pending

    def undo_delete(self) -> bool:
        """Restore the state from before the latest deletion, if its window is still open."""
        if not self._deletions:
            return False
        pending = self._deletions[-1]
        if pending.committed or self._clock() >= pending.expires_at:
            self._commit_expired_deletions()
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        self._deletions.pop()
        self.store.restore(pending.snapshot)
        self._settle_interrupted(pending.session.id)
        logger.info("Restored deleted session %s", pending.session.id)
        return True

    def _settle_interrupted(self, session_id: str) -> None:
        """Close replies whose stream was stopped while their session was deleted."""
        session = self.store.get(session_id)
        if session is None:
            return
        for message in session.messages:
            if not message.streaming:
                continue
            handle = self.pool.get(session_id, message.id)
            if handle is not None and not handle.done:
                # its abort is still in flight and will close the message
                continue

            def _close(m: Message) -> None:
                content = m.text
                m.write(f"{content}\n\n{ABORTED_MARKER}" if content else ABORTED_MARKER)
                m.finalize()

            self.store.update_message(session_id, message.id, _close)
            self._persist_message(session_id, message.id)

    def _commit_deletion(self, pending: PendingDeletion) -> None:
        if pending.committed:
            return
        pending.committed = True
        if pending in self._deletions:
            self._deletions.remove(pending)
        if self.store.get(pending.session.id) is not None:
            # an older snapshot brought it back
            return
        if self.writer is not None:
            self.writer.delete_session(pending.session.id)

    def _commit_expired_deletions(self) -> None:
        now = self._clock()
        for pending in list(self._deletions):
            if now >= pending.expires_at:
                self._commit_deletion(pending)

    def clear_context(self, session_id: str | None = None) -> int | None:
        """Exclude everything so far from future context; calling again at the end undoes it."""
        target = session_id or self.current_session().id

        def _toggle(session: Session) -> int | None:
            end = len(session.messages)
            session.cleared_context_index = None if session.cleared_context_index == end else end
            return session.cleared_context_index

        result = self.store.update_session(target, _toggle)
        session = self.store.get(target)
        if session is not None:
            self._persist_session(session)
        return result

    def get_messages_with_memory(self, session_id: str | None = None) -> list[Message]:
        session = self.store.get(session_id) if session_id else self.current_session()
        if session is None:
            return []
        return compose(session, lang=self.config.lang, models=self.config.models)

    def display_messages(self, session_id: str | None = None) -> list[Message]:
        """Messages for a chat view: the mask preamble (or a greeting), then the log."""
        session = self.store.get(session_id) if session_id else self.current_session()
        if session is None:
            return []
        context = list(session.mask.context)
        first = session.messages[0] if session.messages else None
        if not context and (first is None or first.content != BOT_HELLO.content):
            context.append(BOT_HELLO.model_copy())
        return [*context, *session.messages]

    async def refresh_models(self) -> list[ModelInfo]:
        """Merge the models the service lists into the configured catalogue."""
        try:
            incoming = await self.controller.client.list_models()
        except Exception as exc:
            logger.warning("Listing models failed: %s", classify_error(exc))
            return self.config.models
        self.config.models = merge_models(self.config.models, incoming)
        logger.info("Model catalogue has %d entries", len(self.config.models))
        return self.config.models

    # -- chat turns ----------------------------------------------------------

    async def on_user_input(self, text: str, session_id: str | None = None) -> StreamHandle:
        """Commit the user turn and a streaming placeholder, then dispatch the request.

        Returns as soon as the request is staged; await ``handle.wait()`` for the reply.
        """
        target = session_id or self.current_session().id
        return self._dispatch(target, text, fill=True)

    async def resend(self, message_id: str, session_id: str | None = None) -> StreamHandle | None:
        """Send again the user turn that produced *message_id* (a user or assistant message)."""
        target = session_id or self.current_session().id
        session = self.store.get(target)
        if session is None:
            return None
        found = session.find_message(message_id)
        if found is None:
            return None
        index, message = found
        while message.role != Role.USER:
            index -= 1
            if index < 0:
                logger.info("No user message before %s to resend", message_id)
                return None
            message = session.messages[index]
        return self._dispatch(target, message.content, fill=False)

    def stop(self, message_id: str, session_id: str | None = None) -> bool:
        target = session_id or self.current_session().id
        return self.pool.stop(target, message_id)

    def stop_all(self) -> int:
        return self.pool.stop_all()

    def _dispatch(
        self, session_id: str, content: str | list[ContentPart], *, fill: bool
    ) -> StreamHandle:
        session = self.store.get(session_id)
        if session is None:
            msg = f"Unknown session {session_id}"
            raise KeyError(msg)
        config = session.config

        with trace_chat_turn(session_id) as span:
            if fill and isinstance(content, str):
                content = fill_template(
                    content, config, lang=self.config.lang, models=self.config.models
                )
                logger.debug("User input after template: %s", content)

            user_message = Message(role=Role.USER, content=content)
            bot_message = Message(role=Role.ASSISTANT, streaming=True, model=config.model)

            send_messages = [
                *compose(session, lang=self.config.lang, models=self.config.models),
                user_message,
            ]
            self.store.append_messages(session_id, [user_message, bot_message])
            if self.writer is not None:
                self.writer.append_message(session_id, user_message)

            request = ChatRequest.build(
                send_messages, RequestConfig.from_model_config(config, stream=True)
            )
            span.set_attribute("chat.messages", len(send_messages))
            callbacks = self._turn_callbacks(session_id, user_message.id, bot_message.id)
            return self.controller.start(session_id, bot_message.id, request, callbacks)

    def _turn_callbacks(self, session_id: str, user_id: str, bot_id: str) -> StreamCallbacks:
        def on_update(text: str, _delta: str) -> None:
            def _write(m: Message) -> None:
                m.streaming = True
                if text:
                    m.write(text)

            self.store.update_message(session_id, bot_id, _write)

        def on_finish(text: str) -> None:
            def _freeze(m: Message) -> None:
                if text:
                    m.write(text)
                m.finalize()

            self.store.update_message(session_id, bot_id, _freeze)
            if text:
                self._on_new_message(session_id, bot_id)

        def on_error(error: ChatError) -> None:
            aborted = is_abort(error)

            def _fail(m: Message) -> None:
                if not m.streaming:
                    return
                tail = ABORTED_MARKER if aborted else pretty_error(error)
                content = m.text
                m.write(f"{content}\n\n{tail}" if content else tail)
                m.finalize()
                m.is_error = not aborted

            def _flag_user(m: Message) -> None:
                m.is_error = not aborted

            self.store.update_message(session_id, bot_id, _fail)
            self.store.update_message(session_id, user_id, _flag_user)
            if aborted:
                logger.info("Chat turn %s,%s stopped by user", session_id, bot_id)
            else:
                logger.error("Chat turn %s,%s failed: %s", session_id, bot_id, error)
            self._persist_message(session_id, user_id)
            self._persist_message(session_id, bot_id)

        return StreamCallbacks(on_update=on_update, on_finish=on_finish, on_error=on_error)

    def _on_new_message(self, session_id: str, message_id: str) -> None:
        session = self.store.get(session_id)
        if session is None:
            return
        found = session.find_message(message_id)
        if found is None:
            return
        text = found[1].text

        def _stat(s: Session) -> None:
            s.stat.token_count += estimate_tokens(text)
            s.stat.word_count += len(text.split())
            s.stat.char_count += len(text)

        self.store.update_session(session_id, _stat)
        self.events.emit(
            ChatEvent(EventKind.MESSAGE_COMMITTED, session_id, {"message_id": message_id})
        )
        self._persist_message(session_id, message_id)
        self.summarizer.summarize_session(session_id)

    # -- persistence helpers -------------------------------------------------

    def _persist_message(self, session_id: str, message_id: str) -> None:
        if self.writer is None:
            return
        session = self.store.get(session_id)
        found = session.find_message(message_id) if session is not None else None
        if found is not None:
            self.writer.append_message(session_id, found[1])

    def _persist_session(self, session: Session) -> None:
        if self.writer is not None:
            self.writer.update_session(session)

    async def wait_idle(self) -> None:
        """Wait until no stream, summarization or persistence write is outstanding."""
        while True:
            handles = self.pool.handles()
            for handle in handles:
                await handle.wait()
            await self.summarizer.wait_idle()
            if self.writer is not None:
                await self.writer.flush()
            if not self.pool.has_pending() and not self.summarizer.busy:
                return
