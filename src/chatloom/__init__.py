"""chatloom — chat session core: token-budgeted context, rolling memory, streaming with cancellation."""

from __future__ import annotations

__version__ = "0.1.0"

from .client import ChatClient, ChatRequest, ChatResponse, RequestConfig, StubChatClient
from .client_factory import ClientFactory
from .composer import ComposedContext, compose, compose_parts, memory_prompt
from .config import AppConfig, ModelInfo, configure_logging, limit_number, merge_models
from .constants import DEFAULT_TOPIC
from .errors import (
    AbortedByUser,
    ChatError,
    ModelRefusal,
    PersistenceError,
    ProviderError,
    TransientNetworkError,
    classify_error,
    is_abort,
    pretty_error,
)
from .events import ChatEvent, EventBus, EventKind
from .manager import PendingDeletion, SessionManager
from .masks import MaskRegistry
from .models import (
    BOT_HELLO,
    ChatStat,
    ContentPart,
    Mask,
    Message,
    ModelConfig,
    Role,
    Session,
    create_empty_session,
)
from .openai_client import OpenAIChatClient
from .repository import (
    HttpRepository,
    InMemoryRepository,
    JsonFileRepository,
    PersistenceWriter,
    SessionRepository,
    SqliteRepository,
    create_repository,
)
from .store import ChatStore, StoreSnapshot
from .streaming import ControllerPool, StreamCallbacks, StreamHandle, StreamingController, StreamState
from .summarizer import Summarizer
from .telemetry import ChatTracer, TelemetryConfig, configure_tracing
from .template import fill_template, trim_topic
from .tokens import TokenBudget, estimate_tokens

__all__ = [
    "BOT_HELLO",
    "DEFAULT_TOPIC",
    "AbortedByUser",
    "AppConfig",
    "ChatClient",
    "ChatError",
    "ChatEvent",
    "ChatRequest",
    "ChatResponse",
    "ChatStat",
    "ChatStore",
    "ChatTracer",
    "ClientFactory",
    "ComposedContext",
    "ContentPart",
    "ControllerPool",
    "EventBus",
    "EventKind",
    "HttpRepository",
    "InMemoryRepository",
    "JsonFileRepository",
    "Mask",
    "MaskRegistry",
    "Message",
    "ModelConfig",
    "ModelInfo",
    "ModelRefusal",
    "OpenAIChatClient",
    "PendingDeletion",
    "PersistenceError",
    "PersistenceWriter",
    "ProviderError",
    "RequestConfig",
    "Role",
    "Session",
    "SessionManager",
    "SessionRepository",
    "SqliteRepository",
    "StoreSnapshot",
    "StreamCallbacks",
    "StreamHandle",
    "StreamState",
    "StreamingController",
    "StubChatClient",
    "Summarizer",
    "TelemetryConfig",
    "TokenBudget",
    "TransientNetworkError",
    "classify_error",
    "compose",
    "compose_parts",
    "configure_logging",
    "configure_tracing",
    "create_empty_session",
    "create_repository",
    "estimate_tokens",
    "fill_template",
    "is_abort",
    "limit_number",
    "memory_prompt",
    "merge_models",
    "pretty_error",
    "trim_topic",
]
