"""Configuration — environment-driven app settings, model catalogue, value limits."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field

from pydantic import BaseModel

from .constants import DEFAULT_UNDO_WINDOW_SEC

_ENV_PREFIX = "CHATLOOM_"
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def limit_number(x: float, min_value: float, max_value: float, default: float) -> float:
    """Clamp *x* into ``[min_value, max_value]``; NaN falls back to *default*."""
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return default
    return min(max_value, max(min_value, x))


# ---------------------------------------------------------------------------
# Model catalogue
# ---------------------------------------------------------------------------


class ModelInfo(BaseModel):
    """A model the client knows about."""

    name: str
    provider: str = "OpenAI"
    available: bool = True


DEFAULT_MODELS: list[ModelInfo] = [
    ModelInfo(name="gpt-4o-mini"),
    ModelInfo(name="gpt-4o"),
    ModelInfo(name="gpt-4.1"),
    ModelInfo(name="gpt-4.1-mini"),
    ModelInfo(name="gpt-4-turbo"),
    ModelInfo(name="claude-3-5-sonnet", provider="Anthropic"),
    ModelInfo(name="gemini-1.5-pro", provider="Google"),
]


def find_model(name: str, models: list[ModelInfo] | None = None) -> ModelInfo | None:
    for info in models if models is not None else DEFAULT_MODELS:
        if info.name == name:
            return info
    return None


def supports_system_prompt(model: str) -> bool:
    """Only OpenAI chat models get the injected global system prompt."""
    return model.startswith("gpt-")


def merge_models(existing: list[ModelInfo], incoming: list[ModelInfo]) -> list[ModelInfo]:
    """Merge a freshly fetched model list into the known one.

    Known models not present in *incoming* are kept but marked unavailable;
    everything in *incoming* is marked available (and wins on name clashes).
    """
    if not incoming:
        return list(existing)
    merged: dict[str, ModelInfo] = {}
    for info in existing:
        merged[info.name] = info.model_copy(update={"available": False})
    for info in incoming:
        merged[info.name] = info.model_copy(update={"available": True})
    return list(merged.values())


# ---------------------------------------------------------------------------
# App configuration
# ---------------------------------------------------------------------------


def _env(name: str, default: str = "") -> str:
    return os.environ.get(_ENV_PREFIX + name, default).strip()


@dataclass
class AppConfig:
    """Process-wide settings. Build from the environment with :meth:`from_env`."""

    llm_provider: str = "stub"  # "openai" | "stub"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str | None = None
    llm_timeout: float = 120.0
    auto_generate_title: bool = True
    undo_window: float = DEFAULT_UNDO_WINDOW_SEC
    lang: str = "en"
    log_level: str = "INFO"
    storage: str = "memory"  # "memory" | "json" | "sqlite" | "http"
    storage_path: str = "./chatloom-data"
    storage_url: str | None = None
    masks_url: str | None = None
    trace_exporter: str = "none"  # "none" | "stdout" | "otlp"
    otlp_endpoint: str = "http://localhost:4317"
    models: list[ModelInfo] = field(default_factory=lambda: list(DEFAULT_MODELS))

    @classmethod
    def from_env(cls) -> AppConfig:
        defaults = cls()
        timeout = _env("LLM_TIMEOUT_SEC")
        undo = _env("UNDO_WINDOW_SEC")
        auto_title = _env("AUTO_TITLE")
        return cls(
            llm_provider=_env("LLM_PROVIDER", defaults.llm_provider).lower(),
            api_key=_env("API_KEY") or None,
            base_url=_env("BASE_URL", defaults.base_url),
            model=_env("MODEL") or None,
            llm_timeout=float(timeout) if timeout else defaults.llm_timeout,
            auto_generate_title=(
                auto_title.lower() in _TRUTHY if auto_title else defaults.auto_generate_title
            ),
            undo_window=float(undo) if undo else defaults.undo_window,
            lang=_env("LANG", defaults.lang),
            log_level=_env("LOG_LEVEL", defaults.log_level).upper(),
            storage=_env("STORAGE", defaults.storage).lower(),
            storage_path=_env("STORAGE_PATH", defaults.storage_path),
            storage_url=_env("STORAGE_URL") or None,
            masks_url=_env("MASKS_URL") or None,
            trace_exporter=_env("TRACE_EXPORTER", defaults.trace_exporter).lower(),
            otlp_endpoint=_env("OTLP_ENDPOINT", defaults.otlp_endpoint),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a root stream handler once; later calls only adjust the level."""
    root = logging.getLogger()
    numeric = getattr(logging, level.upper(), logging.INFO)
    if not root.handlers:
        logging.basicConfig(
            level=numeric,
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    root.setLevel(numeric)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
