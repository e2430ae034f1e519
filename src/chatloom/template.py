"""Template filling for user input and the injected system prompt."""

from __future__ import annotations

import logging
import re
from datetime import datetime

from .config import ModelInfo, find_model
from .constants import (
    DEFAULT_INPUT_TEMPLATE,
    DEFAULT_SERVICE_PROVIDER,
    INPUT_PLACEHOLDER,
    KNOWLEDGE_CUTOFF,
)
from .models import ModelConfig

logger = logging.getLogger(__name__)


def fill_template(
    user_input: str,
    config: ModelConfig,
    *,
    template: str | None = None,
    now: datetime | None = None,
    lang: str = "en",
    models: list[ModelInfo] | None = None,
) -> str:
    """Resolve ``{{ServiceProvider}}``, ``{{cutoff}}``, ``{{model}}``, ``{{time}}``,
    ``{{lang}}`` and ``{{input}}`` in the session template.

    If the input already starts with the template, the template is dropped so
    it is not applied twice. A template without ``{{input}}`` gets the input
    appended on a new line. ``{{input}}`` is substituted last, so placeholders
    typed by the user are left alone.
    """
    output = template if template is not None else (config.template or DEFAULT_INPUT_TEMPLATE)

    if output and user_input.startswith(output):
        output = ""

    if INPUT_PLACEHOLDER not in output:
        logger.debug("Template lacks %s, appending input", INPUT_PLACEHOLDER)
        output = f"{output}\n{INPUT_PLACEHOLDER}" if output else INPUT_PLACEHOLDER

    info = find_model(config.model, models)
    variables = {
        "ServiceProvider": info.provider if info else DEFAULT_SERVICE_PROVIDER,
        "cutoff": KNOWLEDGE_CUTOFF.get(config.model, KNOWLEDGE_CUTOFF["default"]),
        "model": config.model,
        "time": (now or datetime.now().astimezone()).strftime("%a %b %d %Y %H:%M:%S %Z").strip(),
        "lang": lang,
    }
    for name, value in variables.items():
        output = output.replace("{{" + name + "}}", value)
    return output.replace(INPUT_PLACEHOLDER, user_input)


_TOPIC_EDGES = re.compile(r'^["“”*]+|["“”*]+$')
_TOPIC_TRAILING = re.compile(r"[，。！？”“\"、,.!?*]*$")


def trim_topic(topic: str) -> str:
    """Strip enclosing quotes/asterisks and trailing punctuation from a generated title."""
    return _TOPIC_TRAILING.sub("", _TOPIC_EDGES.sub("", topic.strip())).strip()
