"""OpenTelemetry tracing for chat turns, summarization and persistence.

Supports stdout, OTLP and noop exporters.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import NoOpTracer, Span, Tracer

if TYPE_CHECKING:
    from .config import AppConfig

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class TelemetryConfig:
    """Configuration for the chatloom tracing subsystem."""

    service_name: str = "chatloom"
    enabled: bool = True
    exporter: str = "none"  # "stdout" | "otlp" | "none"
    otlp_endpoint: str = "http://localhost:4317"


# ---------------------------------------------------------------------------
# ChatTracer
# ---------------------------------------------------------------------------


class ChatTracer:
    """Wraps OpenTelemetry ``TracerProvider`` setup and span helpers."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    def init(self) -> None:
        """Set up the OTel TracerProvider based on config."""
        cfg = self._config

        if not cfg.enabled or cfg.exporter == "none":
            return

        resource = Resource.create({"service.name": cfg.service_name})

        if cfg.exporter == "stdout":
            from opentelemetry.sdk.trace.export import (
                ConsoleSpanExporter,
                SimpleSpanProcessor,
            )

            provider = TracerProvider(resource=resource)
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
            self._provider = provider
            self._tracer = provider.get_tracer(cfg.service_name)

        elif cfg.exporter == "otlp":
            try:
                from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                    OTLPSpanExporter,
                )
                from opentelemetry.sdk.trace.export import BatchSpanProcessor
            except ImportError:  # pragma: no cover
                # optional extra not installed: stay on the noop tracer
                return

            exporter = OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
            provider = TracerProvider(resource=resource)
            provider.add_span_processor(BatchSpanProcessor(exporter))
            self._provider = provider
            self._tracer = provider.get_tracer(cfg.service_name)

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, str] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a span as a context manager."""
        with self._tracer.start_as_current_span(name) as s:
            if attributes:
                for k, v in attributes.items():
                    s.set_attribute(k, v)
            yield s

    def shutdown(self) -> None:
        """Flush pending spans and shut down the provider. Safe to call twice."""
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None


_DEFAULT_TRACER: ChatTracer | None = None


def get_tracer() -> ChatTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = ChatTracer()
    return _DEFAULT_TRACER


def set_tracer(tracer: ChatTracer) -> None:
    """Install *tracer* as the process-wide default (call ``init()`` first)."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    _DEFAULT_TRACER = tracer


def configure_tracing(config: AppConfig) -> ChatTracer:
    """Build, initialise and install the tracer selected by *config*.

    Any previously installed tracer is shut down first.
    """
    tracer = ChatTracer(
        TelemetryConfig(exporter=config.trace_exporter, otlp_endpoint=config.otlp_endpoint)
    )
    tracer.init()
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    set_tracer(tracer)
    return tracer


# ---------------------------------------------------------------------------
# Convenience context managers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_chat_turn(session_id: str) -> Generator[Span, None, None]:
    with get_tracer().span("chat/turn", {"session.id": session_id}) as s:
        yield s


@contextlib.contextmanager
def trace_summarize(session_id: str, kind: str) -> Generator[Span, None, None]:
    """Trace a title or memory summarization request."""
    with get_tracer().span(
        "chat/summarize", {"session.id": session_id, "summarize.kind": kind}
    ) as s:
        yield s


@contextlib.contextmanager
def trace_persistence(op: str) -> Generator[Span, None, None]:
    with get_tracer().span("persistence/op", {"persistence.op": op}) as s:
        yield s
