"""Image generation and illustration."""

from .adapters import BaseImageAdapter, GeminiImageAdapter, OpenAIImageAdapter, get_image_adapter
from .manager import Illustrator, encode_webp

__all__ = [
    "BaseImageAdapter",
    "GeminiImageAdapter",
    "Illustrator",
    "OpenAIImageAdapter",
    "encode_webp",
    "get_image_adapter",
]
