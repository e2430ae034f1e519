"""Client factory — deterministic completion client selection from configuration."""

from __future__ import annotations

from .client import ChatClient, StubChatClient
from .config import AppConfig
from .openai_client import OpenAIChatClient

# Valid values for CHATLOOM_LLM_PROVIDER
_VALID_PROVIDERS = frozenset({"openai", "stub"})


class ClientFactory:
    """Creates the completion client named by ``AppConfig.llm_provider``.

    Resolution (no magic):
        1. ``openai``: OpenAI-compatible HTTP client (needs an API key unless
           ``base_url`` points at a local, keyless server).
        2. ``stub``: deterministic canned replies.
        3. Anything else: ``ValueError``.
    """

    @staticmethod
    def create(config: AppConfig | None = None) -> ChatClient:
        cfg = config or AppConfig.from_env()
        provider = cfg.llm_provider.strip().lower() or "stub"

        if provider not in _VALID_PROVIDERS:
            msg = (
                f"Unknown provider '{provider}'. "
                f"Valid values for CHATLOOM_LLM_PROVIDER: {', '.join(sorted(_VALID_PROVIDERS))}"
            )
            raise ValueError(msg)

        if provider == "openai":
            return OpenAIChatClient(
                api_key=cfg.api_key,
                base_url=cfg.base_url,
                timeout=cfg.llm_timeout,
            )
        return StubChatClient()

    @staticmethod
    def describe(client: ChatClient) -> str:
        """Human-readable description of a client for log output."""
        if isinstance(client, OpenAIChatClient):
            return f"OpenAIChatClient (base_url={client.base_url})"
        if isinstance(client, StubChatClient):
            return "StubChatClient (deterministic responses)"
        return type(client).__name__
