"""Tests for client selection from configuration."""

from __future__ import annotations

import pytest

from chatloom.client import StubChatClient
from chatloom.client_factory import ClientFactory
from chatloom.config import AppConfig
from chatloom.openai_client import OpenAIChatClient


def test_default_is_stub():
    client = ClientFactory.create(AppConfig())
    assert isinstance(client, StubChatClient)
    assert "deterministic" in ClientFactory.describe(client)


def test_openai_client_from_config():
    cfg = AppConfig(llm_provider="openai", api_key="k", base_url="http://localhost:8080/v1", llm_timeout=5)
    client = ClientFactory.create(cfg)
    assert isinstance(client, OpenAIChatClient)
    assert client.api_key == "k"
    assert client.timeout == 5
    assert "localhost:8080" in ClientFactory.describe(client)


def test_unknown_provider_raises():
    with pytest.raises(ValueError, match="Unknown provider"):
        ClientFactory.create(AppConfig(llm_provider="martian"))


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("CHATLOOM_LLM_PROVIDER", "openai")
    monkeypatch.setenv("CHATLOOM_API_KEY", "env-key")
    client = ClientFactory.create()
    assert isinstance(client, OpenAIChatClient)
    assert client.api_key == "env-key"
