"""Context composer — picks the messages sent with the next turn under a token budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from .config import ModelInfo, supports_system_prompt
from .constants import DEFAULT_SYSTEM_TEMPLATE, MEMORY_PROMPT_PREFIX
from .models import Message, Role, Session
from .template import fill_template
from .tokens import TokenBudget, estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class ComposedContext:
    """The four parts of an outgoing context, in send order.

    Only ``recent`` went through the token budget walk; the system prompt,
    memory digest and mask preamble are always included as-is, so a very long
    digest or preamble can still exceed the provider's real limit.
    """

    system: list[Message] = field(default_factory=list)
    memory: list[Message] = field(default_factory=list)
    preamble: list[Message] = field(default_factory=list)
    recent: list[Message] = field(default_factory=list)
    start_index: int = 0
    recent_tokens: int = 0

    def messages(self) -> list[Message]:
        return [*self.system, *self.memory, *self.preamble, *self.recent]


def memory_prompt(session: Session) -> Message:
    """System message carrying the memory digest (empty content when there is none)."""
    return Message(
        id=f"{session.id}:memory",
        role=Role.SYSTEM,
        content=MEMORY_PROMPT_PREFIX + session.memory_digest if session.memory_digest else "",
        date=0.0,
    )


def system_prompt(
    session: Session,
    *,
    now: datetime | None = None,
    lang: str = "en",
    models: list[ModelInfo] | None = None,
) -> Message:
    content = fill_template(
        "",
        session.config,
        template=DEFAULT_SYSTEM_TEMPLATE,
        now=now,
        lang=lang,
        models=models,
    )
    return Message(id=f"{session.id}:system", role=Role.SYSTEM, content=content, date=0.0)


def should_send_memory(session: Session) -> bool:
    cleared = session.cleared_context_index or 0
    return (
        session.config.send_memory
        and bool(session.memory_digest)
        and session.last_summarized_index > cleared
    )


def compose_parts(
    session: Session,
    *,
    now: datetime | None = None,
    lang: str = "en",
    models: list[ModelInfo] | None = None,
) -> ComposedContext:
    config = session.config
    messages = list(session.messages)
    total = len(messages)
    cleared = session.cleared_context_index or 0
    ctx = ComposedContext()

    if config.enable_inject_system_prompts and supports_system_prompt(config.model):
        ctx.system.append(system_prompt(session, now=now, lang=lang, models=models))

    send_memory = should_send_memory(session)
    if send_memory:
        ctx.memory.append(memory_prompt(session))

    ctx.preamble = list(session.mask.context)

    short_term_start = max(0, total - config.history_message_count)
    if send_memory:
        window_start = min(session.last_summarized_index, short_term_start)
    else:
        window_start = short_term_start
    ctx.start_index = max(cleared, window_start)

    # newest first; stop at the first message that would reach the limit
    budget = TokenBudget(config.max_tokens)
    reversed_recent: list[Message] = []
    for i in range(total - 1, ctx.start_index - 1, -1):
        msg = messages[i]
        if msg.is_error:
            continue
        cost = estimate_tokens(msg.text)
        if budget.would_reach(cost):
            break
        budget.consume(cost)
        reversed_recent.append(msg)
    reversed_recent.reverse()
    ctx.recent = reversed_recent
    ctx.recent_tokens = budget.consumed

    logger.debug(
        "Composed context for %s: system=%d memory=%d preamble=%d recent=%d (%d tokens from index %d, %d left)",
        session.id,
        len(ctx.system),
        len(ctx.memory),
        len(ctx.preamble),
        len(ctx.recent),
        ctx.recent_tokens,
        ctx.start_index,
        budget.remaining(),
    )
    return ctx


def compose(
    session: Session,
    *,
    now: datetime | None = None,
    lang: str = "en",
    models: list[ModelInfo] | None = None,
) -> list[Message]:
    """Messages to submit before the new user turn (which the caller appends)."""
    return compose_parts(session, now=now, lang=lang, models=models).messages()
