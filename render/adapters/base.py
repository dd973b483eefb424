"""Image generation adapter abstractions."""

from __future__ import annotations

from typing import Optional


class BaseImageAdapter:
    """
    Prompt (plus optional reference image) in, raw image bytes out.

    Provider errors are raised as-is so the retry policy can classify them by
    status code; an answer without image data is a MalformedOutputError.
    """

    provider = "base"

    async def generate(
        self,
        prompt: str,
        *,
        reference: Optional[bytes] = None,
        reference_mime: str = "image/webp",
    ) -> bytes:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
