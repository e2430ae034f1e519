"""Persistence — session/message repositories and a fire-and-forget writer.

The in-memory chat state is authoritative: repository failures are logged and
announced on the event bus, never rolled back into the store.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import requests

from .config import AppConfig
from .errors import PersistenceError
from .events import ChatEvent, EventBus, EventKind
from .models import Message, Session
from .telemetry import trace_persistence

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    """Durable storage for sessions and their messages."""

    @abstractmethod
    def list_sessions(self) -> list[Session]:
        """All stored sessions, most recently updated first."""

    @abstractmethod
    def create_session(self, session: Session) -> None:
        ...

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        """Remove a session. Returns False if it did not exist."""

    @abstractmethod
    def append_message(self, session_id: str, message: Message) -> None:
        """Store *message*; a message with the same id is replaced in place."""

    @abstractmethod
    def update_session(self, session: Session) -> None:
        """Store session-level fields (topic, digest, indices, mask)."""


def _upsert_message(session: Session, message: Message) -> None:
    found = session.find_message(message.id)
    if found is None:
        session.messages.append(message)
    else:
        session.messages[found[0]] = message


def _session_header(session: Session) -> Session:
    return session.model_copy(update={"messages": []}, deep=True)


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryRepository(SessionRepository):
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def list_sessions(self) -> list[Session]:
        with self._lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.last_update, reverse=True)

    def create_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def append_message(self, session_id: str, message: Message) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise PersistenceError("append_message", KeyError(session_id))
            _upsert_message(session, message.model_copy(deep=True))

    def update_session(self, session: Session) -> None:
        with self._lock:
            stored = self._sessions.get(session.id)
            messages = stored.messages if stored is not None else []
            header = _session_header(session)
            header.messages = messages
            self._sessions[session.id] = header


# ---------------------------------------------------------------------------
# JSON files (one file per session)
# ---------------------------------------------------------------------------


class JsonFileRepository(SessionRepository):
    """Stores each session as ``<root>/<session_id>.json``."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, session_id: str) -> Path:
        return self._root / f"{session_id}.json"

    def _load(self, session_id: str) -> Session | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return Session.model_validate_json(path.read_text(encoding="utf-8"))

    def _save(self, session: Session) -> None:
        path = self._path(session.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)

    def list_sessions(self) -> list[Session]:
        sessions: list[Session] = []
        with self._lock:
            for path in self._root.glob("*.json"):
                try:
                    sessions.append(Session.model_validate_json(path.read_text(encoding="utf-8")))
                except ValueError:
                    logger.warning("Skipping unreadable session file %s", path, exc_info=True)
        return sorted(sessions, key=lambda s: s.last_update, reverse=True)

    def create_session(self, session: Session) -> None:
        with self._lock:
            self._save(session)

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            path = self._path(session_id)
            if not path.exists():
                return False
            path.unlink()
            return True

    def append_message(self, session_id: str, message: Message) -> None:
        with self._lock:
            session = self._load(session_id)
            if session is None:
                raise PersistenceError("append_message", KeyError(session_id))
            _upsert_message(session, message)
            self._save(session)

    def update_session(self, session: Session) -> None:
        with self._lock:
            stored = self._load(session.id)
            header = _session_header(session)
            header.messages = stored.messages if stored is not None else []
            self._save(header)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


class SqliteRepository(SessionRepository):
    """Sessions and messages in two SQLite tables; models stored as JSON blobs."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                last_update REAL NOT NULL
            )"""
        )
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS messages (
                id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (session_id, id)
            )"""
        )
        self._conn.commit()

    def list_sessions(self) -> list[Session]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, data FROM sessions ORDER BY last_update DESC"
            ).fetchall()
            sessions: list[Session] = []
            for session_id, data in rows:
                session = Session.model_validate_json(data)
                message_rows = self._conn.execute(
                    "SELECT data FROM messages WHERE session_id = ? ORDER BY seq",
                    (session_id,),
                ).fetchall()
                session.messages = [Message.model_validate_json(r[0]) for r in message_rows]
                sessions.append(session)
        return sessions

    def _write_header(self, session: Session) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO sessions (id, data, last_update) VALUES (?, ?, ?)",
            (session.id, _session_header(session).model_dump_json(), session.last_update),
        )

    def create_session(self, session: Session) -> None:
        with self._lock:
            self._write_header(session)
            for seq, message in enumerate(session.messages):
                self._conn.execute(
                    "INSERT OR REPLACE INTO messages (id, session_id, seq, data) VALUES (?, ?, ?, ?)",
                    (message.id, session.id, seq, message.model_dump_json()),
                )
            self._conn.commit()

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            self._conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            self._conn.commit()
            return cur.rowcount > 0

    def append_message(self, session_id: str, message: Message) -> None:
        with self._lock:
            if not self._conn.execute(
                "SELECT 1 FROM sessions WHERE id = ?", (session_id,)
            ).fetchone():
                raise PersistenceError("append_message", KeyError(session_id))
            existing = self._conn.execute(
                "SELECT seq FROM messages WHERE session_id = ? AND id = ?",
                (session_id, message.id),
            ).fetchone()
            if existing is not None:
                seq = existing[0]
            else:
                row = self._conn.execute(
                    "SELECT COALESCE(MAX(seq), -1) + 1 FROM messages WHERE session_id = ?",
                    (session_id,),
                ).fetchone()
                seq = row[0]
            self._conn.execute(
                "INSERT OR REPLACE INTO messages (id, session_id, seq, data) VALUES (?, ?, ?, ?)",
                (message.id, session_id, seq, message.model_dump_json()),
            )
            self._conn.commit()

    def update_session(self, session: Session) -> None:
        with self._lock:
            self._write_header(session)
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()


# ---------------------------------------------------------------------------
# Remote HTTP backend
# ---------------------------------------------------------------------------


class HttpRepository(SessionRepository):
    """Sessions kept by a remote API (``/session/*`` and ``/message/*`` routes)."""

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _request(self, method: str, path: str, payload: Any = None) -> requests.Response:
        resp = requests.request(
            method,
            f"{self._base_url}{path}",
            json=payload,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp

    def list_sessions(self) -> list[Session]:
        data = self._request("GET", "/session/all").json()
        return [Session.model_validate(item) for item in data]

    def create_session(self, session: Session) -> None:
        self._request("POST", "/session/add", session.model_dump(mode="json"))

    def delete_session(self, session_id: str) -> bool:
        try:
            self._request("DELETE", f"/session/{session_id}")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return False
            raise
        return True

    def append_message(self, session_id: str, message: Message) -> None:
        self._request(
            "POST",
            "/message/add",
            {"session_id": session_id, "message": message.model_dump(mode="json")},
        )

    def update_session(self, session: Session) -> None:
        payload = _session_header(session).model_dump(mode="json")
        self._request("PUT", f"/session/{session.id}", payload)


def create_repository(config: AppConfig) -> SessionRepository:
    """Pick a backend from ``AppConfig.storage``."""
    kind = config.storage
    if kind == "memory":
        return InMemoryRepository()
    if kind == "json":
        return JsonFileRepository(config.storage_path)
    if kind == "sqlite":
        path = Path(config.storage_path)
        if path.suffix != ".db":
            path.mkdir(parents=True, exist_ok=True)
            path = path / "chatloom.db"
        return SqliteRepository(path)
    if kind == "http":
        if not config.storage_url:
            msg = "CHATLOOM_STORAGE_URL is required for http storage"
            raise ValueError(msg)
        return HttpRepository(config.storage_url)
    msg = f"Unknown storage backend '{kind}'. Valid values: http, json, memory, sqlite"
    raise ValueError(msg)


# ---------------------------------------------------------------------------
# Fire-and-forget writer
# ---------------------------------------------------------------------------


class PersistenceWriter:
    """Runs repository writes off the event loop and reports failures.

    Inside a running loop, writes go to a single worker thread (so they land
    in submission order) and return immediately; without one they run inline. Either way a failure is logged
    and emitted as ``PERSISTENCE_FAILED``, never raised to the caller.
    """

    def __init__(self, repository: SessionRepository, events: EventBus | None = None) -> None:
        self.repository = repository
        self.events = events or EventBus()
        self._pending: set[asyncio.Future[None]] = set()
        self._executor: ThreadPoolExecutor | None = None

    def submit(self, op: str, session_id: str, fn: Callable[[], Any]) -> None:
        def _run() -> None:
            with trace_persistence(op):
                try:
                    fn()
                except Exception as exc:
                    self._report(op, session_id, exc)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _run()
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="chatloom-persist"
            )
        future = loop.run_in_executor(self._executor, _run)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _report(self, op: str, session_id: str, exc: Exception) -> None:
        error = exc if isinstance(exc, PersistenceError) else PersistenceError(op, exc)
        logger.error("Persistence %s failed for %s: %s", op, session_id, error, exc_info=exc)
        self.events.emit(
            ChatEvent(EventKind.PERSISTENCE_FAILED, session_id, {"op": op, "error": str(error)})
        )
        self.events.notice(f"Could not save changes ({op})", session_id)

    async def flush(self) -> None:
        """Wait for every write submitted so far."""
        while self._pending:
            await asyncio.wait(set(self._pending))

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def create_session(self, session: Session) -> None:
        snapshot = session.model_copy(deep=True)
        self.submit("create_session", session.id, lambda: self.repository.create_session(snapshot))

    def delete_session(self, session_id: str) -> None:
        self.submit("delete_session", session_id, lambda: self.repository.delete_session(session_id))

    def append_message(self, session_id: str, message: Message) -> None:
        snapshot = message.model_copy(deep=True)
        self.submit(
            "append_message",
            session_id,
            lambda: self.repository.append_message(session_id, snapshot),
        )

    def update_session(self, session: Session) -> None:
        snapshot = session.model_copy(deep=True)
        self.submit("update_session", session.id, lambda: self.repository.update_session(snapshot))
