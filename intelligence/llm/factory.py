"""
LLM Factory
Builds the configured text model
"""
from typing import Optional
import logging

from utils.exceptions import ConfigurationError

from .base import BaseLLM
from .openai_llm import OpenAILLM
from .gemini_llm import GeminiLLM


logger = logging.getLogger(__name__)


DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4o-mini",
}


def get_llm(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs,
) -> BaseLLM:
    """
    Get an LLM instance

    Reads LLM_* settings (config/.env); explicit arguments win.

    Args:
        provider: gemini or openai
        model: model name (provider default when omitted)
        **kwargs: extra parameters (temperature, max_tokens, api_key, base_url)

    Returns:
        BaseLLM instance

    Example:
        llm = get_llm()
        llm = get_llm(provider="openai", model="gpt-4o")
    """
    from config import get_llm_settings

    settings = get_llm_settings()

    provider = (provider or settings.provider or "").strip().lower()
    if provider not in DEFAULT_MODELS:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}", {"supported": sorted(DEFAULT_MODELS)})

    model = model or settings.model_name or DEFAULT_MODELS[provider]

    api_keys = {
        "gemini": settings.gemini_api_key,
        "openai": settings.openai_api_key,
    }
    api_key = kwargs.pop("api_key", None) or api_keys.get(provider)
    if not api_key:
        raise ConfigurationError(f"Missing API key for LLM provider '{provider}'", {"env": f"LLM_{provider.upper()}_API_KEY"})

    defaults = {
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "timeout": settings.timeout,
    }
    for key, value in defaults.items():
        kwargs.setdefault(key, value)

    logger.info("llm_selected provider=%s model=%s", provider, model)
    if provider == "openai":
        return OpenAILLM(
            model=model,
            api_key=api_key,
            base_url=kwargs.pop("base_url", None),
            **kwargs,
        )
    return GeminiLLM(
        model=model,
        api_key=api_key,
        **kwargs,
    )
