"""Tests for telemetry — OpenTelemetry tracing integration."""

from __future__ import annotations

from chatloom.config import AppConfig
from chatloom.telemetry import (
    ChatTracer,
    configure_tracing,
    TelemetryConfig,
    get_tracer,
    set_tracer,
    trace_chat_turn,
    trace_persistence,
    trace_summarize,
)


def test_init_with_none_config_succeeds() -> None:
    tracer = ChatTracer(TelemetryConfig(exporter="none"))
    tracer.init()
    tracer.shutdown()


def test_span_context_manager_works() -> None:
    tracer = ChatTracer(TelemetryConfig(exporter="none"))
    tracer.init()
    with tracer.span("test-span", {"key": "value"}) as s:
        assert s is not None
    tracer.shutdown()


def test_stdout_exporter_records_spans() -> None:
    tracer = ChatTracer(TelemetryConfig(exporter="stdout"))
    tracer.init()
    with tracer.span("chat/turn", {"session.id": "s1"}) as s:
        assert s.is_recording()
    tracer.shutdown()
    tracer.shutdown()


def test_set_tracer_replaces_default() -> None:
    original = get_tracer()
    replacement = ChatTracer()
    set_tracer(replacement)
    try:
        assert get_tracer() is replacement
    finally:
        set_tracer(original)


def test_convenience_functions_do_not_error() -> None:
    with trace_chat_turn("session-1") as s:
        assert s is not None
    with trace_summarize("session-1", "memory") as s:
        assert s is not None
    with trace_persistence("append_message") as s:
        assert s is not None


def test_configure_tracing_installs_configured_exporter() -> None:
    original = get_tracer()
    tracer = configure_tracing(AppConfig(trace_exporter="stdout"))
    try:
        assert get_tracer() is tracer
        with trace_chat_turn("session-1") as s:
            assert s.is_recording()
    finally:
        set_tracer(original)
        tracer.shutdown()


def test_configure_tracing_defaults_to_noop() -> None:
    original = get_tracer()
    tracer = configure_tracing(AppConfig())
    try:
        with trace_persistence("list") as s:
            assert not s.is_recording()
    finally:
        set_tracer(original)
