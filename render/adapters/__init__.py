"""Image generation adapters."""

from typing import Optional

from utils.exceptions import ConfigurationError

from .base import BaseImageAdapter
from .gemini import GeminiImageAdapter
from .openai_images import OpenAIImageAdapter

DEFAULT_IMAGE_MODELS = {
    "gemini": "gemini-2.5-flash-image",
    "openai": "gpt-image-1",
}


def get_image_adapter(provider: Optional[str] = None, model: Optional[str] = None) -> BaseImageAdapter:
    """Build the configured image adapter from IMAGE_* settings."""
    from config import get_image_settings

    settings = get_image_settings()
    provider = (provider or settings.provider or "").strip().lower()
    if provider not in DEFAULT_IMAGE_MODELS:
        raise ConfigurationError(f"Unsupported image provider: {provider}", {"supported": sorted(DEFAULT_IMAGE_MODELS)})

    api_key = settings.gemini_api_key if provider == "gemini" else settings.openai_api_key
    if not api_key:
        raise ConfigurationError(f"Missing API key for image provider '{provider}'", {"env": f"IMAGE_{provider.upper()}_API_KEY"})

    adapter_cls = GeminiImageAdapter if provider == "gemini" else OpenAIImageAdapter
    return adapter_cls(
        api_key=api_key,
        model=model or settings.model_name or DEFAULT_IMAGE_MODELS[provider],
        aspect_ratio=settings.aspect_ratio,
        timeout_s=settings.timeout,
    )


__all__ = [
    "BaseImageAdapter",
    "DEFAULT_IMAGE_MODELS",
    "GeminiImageAdapter",
    "OpenAIImageAdapter",
    "get_image_adapter",
]
