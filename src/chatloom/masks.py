"""Mask registry — built-in personas plus masks fetched from a remote catalogue."""

from __future__ import annotations

import logging

import requests
from pydantic import ValidationError

from .models import MASK_MODEL_CONFIG, Mask, Message, Role

logger = logging.getLogger(__name__)


def _preamble(*pairs: tuple[Role, str]) -> list[Message]:
    return [
        Message(id=f"preamble-{i}", role=role, content=text, date=0.0)
        for i, (role, text) in enumerate(pairs)
    ]


BUILTIN_MASKS: list[Mask] = [
    Mask(
        id="builtin-translator",
        name="Translator",
        avatar="1f310",
        builtin=True,
        created_at=0.0,
        context=_preamble(
            (
                Role.USER,
                "You are a translator. Translate everything I send into English, "
                "keeping the original formatting. Reply with the translation only.",
            ),
        ),
        config=MASK_MODEL_CONFIG.model_copy(update={"temperature": 0.3}),
    ),
    Mask(
        id="builtin-code-reviewer",
        name="Code Reviewer",
        avatar="1f9d1-200d-1f4bb",
        builtin=True,
        created_at=0.0,
        context=_preamble(
            (
                Role.SYSTEM,
                "You review code. Point out bugs first, then readability problems. "
                "Quote the lines you comment on.",
            ),
            (Role.ASSISTANT, "Paste the code you want reviewed."),
        ),
        config=MASK_MODEL_CONFIG.model_copy(update={"send_memory": True}),
    ),
]


class MaskRegistry:
    """Holds the masks a new session can be started from."""

    def __init__(self, masks: list[Mask] | None = None) -> None:
        self._masks: dict[str, Mask] = {}
        for mask in BUILTIN_MASKS if masks is None else masks:
            self._masks[mask.id] = mask

    def all(self) -> list[Mask]:
        return list(self._masks.values())

    def get(self, mask_id: str) -> Mask | None:
        return self._masks.get(mask_id)

    def find_by_name(self, name: str) -> Mask | None:
        for mask in self._masks.values():
            if mask.name == name:
                return mask
        return None

    def add(self, mask: Mask) -> None:
        self._masks[mask.id] = mask

    def fetch_remote(self, base_url: str, timeout: float = 10.0) -> list[Mask]:
        """Load masks from ``GET <base_url>/mask/all``.

        Remote masks carry no usable settings, so each gets the default mask
        model config. Fetch errors are logged and leave the registry unchanged.
        """
        url = f"{base_url.rstrip('/')}/mask/all"
        try:
            resp = requests.get(url, timeout=timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError):
            logger.error("Fetching masks from %s failed", url, exc_info=True)
            return []

        fetched: list[Mask] = []
        try:
            for item in payload:
                item = dict(item)
                item.pop("config", None)
                item.pop("modelConfig", None)
                mask = Mask.model_validate(item)
                mask.config = MASK_MODEL_CONFIG.model_copy(deep=True)
                fetched.append(mask)
        except (ValidationError, TypeError, ValueError):
            logger.error("Malformed mask catalogue from %s", url, exc_info=True)
            return []

        for mask in fetched:
            self._masks[mask.id] = mask
        logger.info("Loaded %d masks from %s", len(fetched), url)
        return fetched
