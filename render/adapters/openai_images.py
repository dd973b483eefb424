"""OpenAI Images API adapter (gpt-image-1)."""

from __future__ import annotations

import base64
import inspect
from typing import Optional

from utils.exceptions import MalformedOutputError

from .base import BaseImageAdapter


_SIZES = {
    "portrait": "1024x1536",
    "square": "1024x1024",
    "landscape": "1536x1024",
}


def size_for_aspect_ratio(aspect_ratio: str) -> str:
    """Closest supported size for a "W:H" ratio."""
    try:
        width, height = (float(part) for part in str(aspect_ratio).split(":", 1))
    except ValueError:
        return _SIZES["portrait"]
    if width <= 0 or height <= 0 or width == height:
        return _SIZES["square"]
    return _SIZES["portrait"] if height > width else _SIZES["landscape"]


class OpenAIImageAdapter(BaseImageAdapter):
    """images.generate for text-only prompts, images.edit when a reference is given."""

    provider = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gpt-image-1",
        aspect_ratio: str = "3:4",
        timeout_s: float = 120.0,
        client=None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.size = size_for_aspect_ratio(aspect_ratio)
        self.timeout_s = float(timeout_s)
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_s, max_retries=0)
        return self._client

    async def generate(
        self,
        prompt: str,
        *,
        reference: Optional[bytes] = None,
        reference_mime: str = "image/webp",
    ) -> bytes:
        client = self._get_client()
        if reference:
            extension = reference_mime.split("/")[-1] or "png"
            response = await client.images.edit(
                model=self.model,
                image=(f"reference.{extension}", reference, reference_mime),
                prompt=prompt,
                size=self.size,
            )
        else:
            response = await client.images.generate(model=self.model, prompt=prompt, size=self.size, n=1)

        data = response.data[0].b64_json if response.data else None
        if not data:
            raise MalformedOutputError("Image API returned no image data", service=self.provider, model=self.model)
        return base64.b64decode(data)

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            maybe_awaitable = close_fn()
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
