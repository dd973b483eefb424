from __future__ import annotations

import pytest

import config
from config import ImageSettings, LLMSettings
from intelligence.llm import GeminiLLM, OpenAILLM, get_llm
from render.adapters import GeminiImageAdapter, OpenAIImageAdapter, get_image_adapter
from utils.exceptions import ConfigurationError


def _llm_settings(**values) -> LLMSettings:
    fields = {"gemini_api_key": None, "openai_api_key": None, "model_name": None}
    fields.update(values)
    return LLMSettings(**fields)


def test_gemini_is_the_default_provider(monkeypatch) -> None:
    monkeypatch.setattr(config, "get_llm_settings", lambda: _llm_settings(provider="gemini", gemini_api_key="g-key"))

    llm = get_llm()

    assert isinstance(llm, GeminiLLM)
    assert llm.model == "gemini-2.5-flash"
    assert llm.api_key == "g-key"


def test_explicit_arguments_win(monkeypatch) -> None:
    monkeypatch.setattr(
        config,
        "get_llm_settings",
        lambda: _llm_settings(provider="gemini", openai_api_key="o-key", temperature=0.2),
    )

    llm = get_llm(provider="openai", model="gpt-4o")

    assert isinstance(llm, OpenAILLM)
    assert llm.model == "gpt-4o"
    assert llm.temperature == 0.2


def test_missing_key_or_unknown_provider_is_a_configuration_error(monkeypatch) -> None:
    monkeypatch.setattr(config, "get_llm_settings", lambda: _llm_settings(provider="gemini"))

    with pytest.raises(ConfigurationError):
        get_llm()
    with pytest.raises(ConfigurationError):
        get_llm(provider="anthropic")


def test_image_adapter_selection(monkeypatch) -> None:
    monkeypatch.setattr(
        config,
        "get_image_settings",
        lambda: ImageSettings(provider="openai", openai_api_key="o-key", gemini_api_key="g-key", model_name=None),
    )

    openai_adapter = get_image_adapter()
    gemini_adapter = get_image_adapter(provider="gemini")

    assert isinstance(openai_adapter, OpenAIImageAdapter)
    assert openai_adapter.model == "gpt-image-1"
    assert isinstance(gemini_adapter, GeminiImageAdapter)
    assert gemini_adapter.model == "gemini-2.5-flash-image"
    assert gemini_adapter.aspect_ratio == "3:4"


def test_image_adapter_without_key_fails(monkeypatch) -> None:
    monkeypatch.setattr(
        config,
        "get_image_settings",
        lambda: ImageSettings(provider="gemini", gemini_api_key=None, openai_api_key=None),
    )

    with pytest.raises(ConfigurationError):
        get_image_adapter()
