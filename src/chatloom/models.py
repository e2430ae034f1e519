"""Data model — messages, model settings, masks (personas) and sessions."""

from __future__ import annotations

import time
import uuid
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import limit_number
from .constants import BOT_HELLO_TEXT, DEFAULT_INPUT_TEMPLATE, DEFAULT_TOPIC


def new_id() -> str:
    return uuid.uuid4().hex


class Role(StrEnum):
    """Role of a message author."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ContentPart(BaseModel):
    """One part of a multimodal message: either text or an image reference."""

    type: Literal["text", "image_url"] = "text"
    text: str | None = None
    image_url: str | None = None


class Message(BaseModel):
    """A chat message.

    While ``streaming`` is true the content may still grow; once it flips to
    false the content is final and :meth:`write` refuses further changes.
    """

    id: str = Field(default_factory=new_id)
    role: Role = Role.USER
    content: str | list[ContentPart] = ""
    date: float = Field(default_factory=time.time)
    streaming: bool = False
    is_error: bool = False
    model: str | None = None

    @property
    def text(self) -> str:
        return message_text(self)

    def write(self, content: str) -> None:
        """Replace the content of a message that is still streaming."""
        if not self.streaming:
            msg = f"Message {self.id} is finalized"
            raise ValueError(msg)
        self.content = content

    def finalize(self) -> None:
        self.streaming = False

    def to_request(self) -> dict[str, Any]:
        """Role/content pair as sent to the completion service."""
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [p.model_dump(exclude_none=True) for p in self.content]
        return {"role": str(self.role), "content": content}


def message_text(message: Message) -> str:
    """Plain text of a message; image parts are ignored."""
    if isinstance(message.content, str):
        return message.content
    return "\n".join(p.text for p in message.content if p.type == "text" and p.text)


# ---------------------------------------------------------------------------
# Model settings and masks
# ---------------------------------------------------------------------------


class ModelConfig(BaseModel):
    """Per-session model settings. Numeric values are clamped into valid ranges."""

    model_config = ConfigDict(validate_assignment=True)

    model: str = "gpt-4o-mini"
    temperature: float = 0.5
    top_p: float = 1.0
    max_tokens: int = 4000
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    send_memory: bool = True
    history_message_count: int = 4
    compress_message_length_threshold: int = 1000
    enable_inject_system_prompts: bool = True
    template: str = DEFAULT_INPUT_TEMPLATE

    @field_validator("max_tokens", mode="before")
    @classmethod
    def _limit_max_tokens(cls, v: Any) -> int:
        return int(limit_number(float(v), 0, 512_000, 1024))

    @field_validator("presence_penalty", "frequency_penalty", mode="before")
    @classmethod
    def _limit_penalty(cls, v: Any) -> float:
        return limit_number(float(v), -2, 2, 0)

    @field_validator("temperature", mode="before")
    @classmethod
    def _limit_temperature(cls, v: Any) -> float:
        return limit_number(float(v), 0, 2, 1)

    @field_validator("top_p", mode="before")
    @classmethod
    def _limit_top_p(cls, v: Any) -> float:
        return limit_number(float(v), 0, 1, 1)


# Settings assigned to masks fetched from a remote mask catalogue.
MASK_MODEL_CONFIG = ModelConfig(
    temperature=1,
    max_tokens=2000,
    send_memory=False,
    history_message_count=4,
    compress_message_length_threshold=1000,
)


class Mask(BaseModel):
    """A persona: fixed preamble messages plus default model settings."""

    id: str = Field(default_factory=new_id)
    name: str = DEFAULT_TOPIC
    avatar: str = "gpt-bot"
    context: list[Message] = Field(default_factory=list)
    config: ModelConfig = Field(default_factory=ModelConfig)
    lang: str = "en"
    builtin: bool = False
    created_at: float = Field(default_factory=time.time)


def create_empty_mask() -> Mask:
    return Mask()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class ChatStat(BaseModel):
    token_count: int = 0
    word_count: int = 0
    char_count: int = 0


class Session(BaseModel):
    """One conversation thread.

    ``messages`` is append-only. Messages before ``last_summarized_index`` are
    represented by ``memory_digest``; messages before ``cleared_context_index``
    are never sent again.
    """

    id: str = Field(default_factory=new_id)
    topic: str = DEFAULT_TOPIC
    memory_digest: str = ""
    messages: list[Message] = Field(default_factory=list)
    stat: ChatStat = Field(default_factory=ChatStat)
    created_at: float = Field(default_factory=time.time)
    last_update: float = Field(default_factory=time.time)
    last_summarized_index: int = 0
    cleared_context_index: int | None = None
    mask: Mask = Field(default_factory=create_empty_mask)

    @property
    def config(self) -> ModelConfig:
        return self.mask.config

    def find_message(self, message_id: str) -> tuple[int, Message] | None:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i, msg
        return None


def create_empty_session(mask: Mask | None = None) -> Session:
    """New empty session, optionally seeded from a mask (persona name becomes the topic)."""
    session = Session()
    if mask is not None:
        session.mask = mask.model_copy(deep=True)
        session.topic = mask.name
    return session


BOT_HELLO = Message(id="bot-hello", role=Role.ASSISTANT, content=BOT_HELLO_TEXT, date=0.0)
