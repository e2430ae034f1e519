"""Tests for session repositories and the fire-and-forget writer."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from chatloom.config import AppConfig
from chatloom.errors import PersistenceError
from chatloom.events import EventBus, EventKind
from chatloom.models import Message, Role, Session
from chatloom.repository import (
    HttpRepository,
    InMemoryRepository,
    JsonFileRepository,
    PersistenceWriter,
    SqliteRepository,
    create_repository,
)


@pytest.fixture(params=["memory", "json", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryRepository()
    if request.param == "json":
        return JsonFileRepository(tmp_path / "sessions")
    return SqliteRepository(tmp_path / "chat.db")


# ---------------------------------------------------------------------------
# Shared contract
# ---------------------------------------------------------------------------


def test_create_and_list(repo):
    session = Session(topic="first", messages=[Message(content="hi")])
    repo.create_session(session)
    stored = repo.list_sessions()
    assert len(stored) == 1
    assert stored[0].id == session.id
    assert stored[0].topic == "first"
    assert [m.content for m in stored[0].messages] == ["hi"]


def test_append_message_keeps_order_and_upserts(repo):
    session = Session()
    repo.create_session(session)
    a = Message(content="a")
    b = Message(role=Role.ASSISTANT, content="", streaming=True)
    repo.append_message(session.id, a)
    repo.append_message(session.id, b)
    b_final = b.model_copy(update={"content": "done", "streaming": False})
    repo.append_message(session.id, b_final)

    messages = repo.list_sessions()[0].messages
    assert [m.content for m in messages] == ["a", "done"]
    assert messages[1].streaming is False


def test_append_to_missing_session_raises(repo):
    with pytest.raises(PersistenceError):
        repo.append_message("missing", Message())


def test_update_session_keeps_messages(repo):
    session = Session()
    repo.create_session(session)
    repo.append_message(session.id, Message(content="kept"))
    updated = session.model_copy(update={"topic": "Renamed", "memory_digest": "digest"})
    repo.update_session(updated)

    stored = repo.list_sessions()[0]
    assert stored.topic == "Renamed"
    assert stored.memory_digest == "digest"
    assert [m.content for m in stored.messages] == ["kept"]


def test_delete_session(repo):
    session = Session()
    repo.create_session(session)
    assert repo.delete_session(session.id) is True
    assert repo.delete_session(session.id) is False
    assert repo.list_sessions() == []


def test_list_orders_by_last_update(repo):
    old = Session(topic="old", last_update=100.0)
    new = Session(topic="new", last_update=200.0)
    repo.create_session(old)
    repo.create_session(new)
    assert [s.topic for s in repo.list_sessions()] == ["new", "old"]


# ---------------------------------------------------------------------------
# Backend specifics
# ---------------------------------------------------------------------------


def test_json_repository_skips_corrupt_files(tmp_path):
    repo = JsonFileRepository(tmp_path)
    repo.create_session(Session(topic="ok"))
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert [s.topic for s in repo.list_sessions()] == ["ok"]


def test_sqlite_repository_survives_reopen(tmp_path):
    path = tmp_path / "chat.db"
    first = SqliteRepository(path)
    session = Session(topic="durable")
    first.create_session(session)
    first.append_message(session.id, Message(content="m"))
    first.close()

    second = SqliteRepository(path)
    stored = second.list_sessions()
    assert stored[0].topic == "durable"
    assert stored[0].messages[0].content == "m"


@patch("chatloom.repository.requests.request")
def test_http_repository_routes(mock_request):
    response = MagicMock()
    response.json.return_value = [Session(topic="remote").model_dump(mode="json")]
    mock_request.return_value = response
    repo = HttpRepository("https://api.test/")

    sessions = repo.list_sessions()
    assert sessions[0].topic == "remote"
    method, url = mock_request.call_args.args
    assert (method, url) == ("GET", "https://api.test/session/all")

    repo.append_message("s1", Message(id="m1", content="x"))
    method, url = mock_request.call_args.args
    assert (method, url) == ("POST", "https://api.test/message/add")
    assert mock_request.call_args.kwargs["json"]["session_id"] == "s1"


@patch("chatloom.repository.requests.request")
def test_http_repository_delete_missing(mock_request):
    missing = requests.Response()
    missing.status_code = 404
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError(response=missing)
    mock_request.return_value = response
    assert HttpRepository("https://api.test").delete_session("gone") is False


def test_create_repository(tmp_path):
    assert isinstance(create_repository(AppConfig(storage="memory")), InMemoryRepository)
    json_repo = create_repository(AppConfig(storage="json", storage_path=str(tmp_path / "j")))
    assert isinstance(json_repo, JsonFileRepository)
    sqlite_repo = create_repository(AppConfig(storage="sqlite", storage_path=str(tmp_path / "s")))
    assert isinstance(sqlite_repo, SqliteRepository)
    assert (tmp_path / "s" / "chatloom.db").exists()
    http_repo = create_repository(AppConfig(storage="http", storage_url="https://api.test"))
    assert isinstance(http_repo, HttpRepository)


def test_create_repository_rejects_bad_config():
    with pytest.raises(ValueError, match="STORAGE_URL"):
        create_repository(AppConfig(storage="http"))
    with pytest.raises(ValueError, match="Unknown storage"):
        create_repository(AppConfig(storage="tape"))


# ---------------------------------------------------------------------------
# PersistenceWriter
# ---------------------------------------------------------------------------


def test_writer_runs_inline_without_loop():
    repo = InMemoryRepository()
    writer = PersistenceWriter(repo)
    session = Session()
    writer.create_session(session)
    writer.append_message(session.id, Message(content="inline"))
    assert repo.list_sessions()[0].messages[0].content == "inline"


def test_writer_snapshots_before_writing():
    repo = InMemoryRepository()
    writer = PersistenceWriter(repo)
    session = Session(topic="before")
    writer.create_session(session)
    session.topic = "after"
    assert repo.list_sessions()[0].topic == "before"


@pytest.mark.asyncio
async def test_writer_in_loop_preserves_order():
    repo = InMemoryRepository()
    writer = PersistenceWriter(repo)
    session = Session()
    writer.create_session(session)
    for i in range(20):
        writer.append_message(session.id, Message(content=str(i)))
    await writer.flush()
    writer.close()
    assert [m.content for m in repo.list_sessions()[0].messages] == [str(i) for i in range(20)]


@pytest.mark.asyncio
async def test_writer_reports_failures_without_raising():
    events = EventBus()
    writer = PersistenceWriter(InMemoryRepository(), events)
    writer.append_message("no-such-session", Message())
    await writer.flush()
    writer.close()
    failures = events.history(EventKind.PERSISTENCE_FAILED)
    assert len(failures) == 1
    assert failures[0].payload["op"] == "append_message"
    assert events.history(EventKind.NOTICE)
