"""Gemini image model adapter (google-genai)."""

from __future__ import annotations

import logging
from typing import Optional

from utils.exceptions import MalformedOutputError

from .base import BaseImageAdapter


logger = logging.getLogger(__name__)


class GeminiImageAdapter(BaseImageAdapter):
    """Adapter boundary for gemini-*-image models via generate_content."""

    provider = "gemini"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash-image",
        aspect_ratio: str = "3:4",
        timeout_s: float = 120.0,
        client=None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.aspect_ratio = aspect_ratio
        self.timeout_s = float(timeout_s)
        self._client = client

    def _get_client(self):
        if self._client is None:
            from google import genai
            from google.genai import types

            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout_s * 1000)),
            )
        return self._client

    async def generate(
        self,
        prompt: str,
        *,
        reference: Optional[bytes] = None,
        reference_mime: str = "image/webp",
    ) -> bytes:
        from google.genai import types

        contents = [types.Part(text=prompt)]
        if reference:
            contents.append(types.Part.from_bytes(data=reference, mime_type=reference_mime))

        response = await self._get_client().aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=self.aspect_ratio),
            ),
        )

        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content and content.parts else []):
                if part.inline_data is not None and part.inline_data.data:
                    return bytes(part.inline_data.data)
                if part.text:
                    logger.info("image_model_text model=%s text=%s", self.model, part.text[:200])

        raise MalformedOutputError("Image model returned no image data", service=self.provider, model=self.model)

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if callable(aclose):
            await aclose()
