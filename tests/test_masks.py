"""Tests for the mask registry."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import requests

from chatloom.masks import BUILTIN_MASKS, MaskRegistry
from chatloom.models import MASK_MODEL_CONFIG, Mask


def test_builtin_masks_loaded_by_default():
    registry = MaskRegistry()
    assert len(registry.all()) == len(BUILTIN_MASKS)
    translator = registry.find_by_name("Translator")
    assert translator is not None
    assert translator.builtin
    assert translator.context


def test_empty_registry_and_add():
    registry = MaskRegistry([])
    assert registry.all() == []
    mask = Mask(id="mine", name="Mine")
    registry.add(mask)
    assert registry.get("mine") is mask


@patch("chatloom.masks.requests.get")
def test_fetch_remote_assigns_default_config(mock_get):
    response = MagicMock()
    response.json.return_value = [
        {
            "id": "remote-1",
            "name": "Poet",
            "context": [{"role": "system", "content": "write poems"}],
            "modelConfig": {"model": "whatever", "temperature": 0.1},
        }
    ]
    mock_get.return_value = response
    registry = MaskRegistry([])

    fetched = registry.fetch_remote("https://api.test/")

    mock_get.assert_called_once_with("https://api.test/mask/all", timeout=10.0)
    assert [m.name for m in fetched] == ["Poet"]
    poet = registry.get("remote-1")
    assert poet.config == MASK_MODEL_CONFIG
    assert poet.config.temperature == 1
    assert poet.config.send_memory is False
    assert poet.context[0].content == "write poems"


@patch("chatloom.masks.requests.get")
def test_fetch_remote_failure_keeps_registry(mock_get):
    mock_get.side_effect = requests.ConnectionError("down")
    registry = MaskRegistry()
    assert registry.fetch_remote("https://api.test") == []
    assert len(registry.all()) == len(BUILTIN_MASKS)


@patch("chatloom.masks.requests.get")
def test_fetch_remote_malformed_item_keeps_registry(mock_get):
    response = MagicMock()
    response.json.return_value = [
        {"id": "good", "name": "Good"},
        {"id": "bad", "name": "Bad", "context": "not a list"},
    ]
    mock_get.return_value = response
    registry = MaskRegistry([])

    assert registry.fetch_remote("https://api.test") == []
    assert registry.all() == []


@patch("chatloom.masks.requests.get")
def test_fetch_remote_non_object_item_keeps_registry(mock_get):
    response = MagicMock()
    response.json.return_value = [{"id": "good", "name": "Good"}, 42]
    mock_get.return_value = response
    registry = MaskRegistry([])

    assert registry.fetch_remote("https://api.test") == []
    assert registry.get("good") is None
