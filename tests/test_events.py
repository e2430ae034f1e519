"""Tests for the event bus."""

from __future__ import annotations

from chatloom.events import ChatEvent, EventBus, EventKind


def test_handlers_by_kind_and_wildcard():
    bus = EventBus()
    specific: list[ChatEvent] = []
    everything: list[ChatEvent] = []
    bus.subscribe(specific.append, EventKind.TOPIC_UPDATED)
    bus.subscribe(everything.append)

    bus.emit(ChatEvent(EventKind.TOPIC_UPDATED, "s1", {"topic": "t"}))
    bus.emit(ChatEvent(EventKind.MEMORY_UPDATED, "s1"))

    assert [e.kind for e in specific] == [EventKind.TOPIC_UPDATED]
    assert [e.kind for e in everything] == [EventKind.TOPIC_UPDATED, EventKind.MEMORY_UPDATED]


def test_unsubscribe():
    bus = EventBus()
    seen: list[ChatEvent] = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    bus.notice("hello")
    assert seen == []


def test_failing_handler_is_isolated():
    bus = EventBus()
    seen: list[ChatEvent] = []

    def boom(_event: ChatEvent) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe(boom)
    bus.subscribe(seen.append)
    bus.notice("still delivered")
    assert seen[0].payload == {"text": "still delivered"}


def test_history_is_bounded():
    bus = EventBus()
    for i in range(250):
        bus.notice(str(i))
    history = bus.history(EventKind.NOTICE)
    assert len(history) == 200
    assert history[-1].payload["text"] == "249"
