"""Illustration pipeline step: generate, re-encode to WebP, store."""

from __future__ import annotations

import asyncio
from io import BytesIO
import logging
from typing import TYPE_CHECKING, Optional

from PIL import Image, UnidentifiedImageError

from storage.artifact_store import BaseArtifactStore
from utils.exceptions import MalformedOutputError

from .adapters import BaseImageAdapter

if TYPE_CHECKING:
    from orchestrator.throttle import RateLimiter, RetryingCaller


logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "Using the attached character reference sheet for visual consistency, generate: "


def encode_webp(payload: bytes, *, quality: int = 80) -> bytes:
    """Re-encode any Pillow-readable image as WebP."""
    try:
        with Image.open(BytesIO(payload)) as image:
            image.load()
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
            out = BytesIO()
            image.save(out, format="WEBP", quality=int(quality))
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise MalformedOutputError(f"Generated image could not be decoded: {exc}", service="image") from exc
    return out.getvalue()


class Illustrator:
    """
    Image collaborator used by the Analyze, Cover and Image stages.

    The generation call goes through the shared image RateLimiter; every
    external step (reference download, generation, upload) is retried on
    transient failures.
    """

    def __init__(
        self,
        *,
        adapter: BaseImageAdapter,
        artifacts: BaseArtifactStore,
        caller: "RetryingCaller",
        limiter: Optional["RateLimiter"] = None,
        webp_quality: int = 80,
    ) -> None:
        self._adapter = adapter
        self._artifacts = artifacts
        self._caller = caller
        self._limiter = limiter
        self._webp_quality = int(webp_quality)

    async def illustrate(self, prompt: str, job_id: str, key: str, reference: Optional[str] = None) -> str:
        """Return the stored artifact reference for `key`."""
        reference_bytes = None
        text = prompt
        if reference:
            reference_bytes = await self._caller.call(f"read_reference:{key}", self._artifacts.read, reference)
            text = REFERENCE_PREFIX + prompt

        raw = await self._caller.call(
            f"generate_image:{key}",
            self._adapter.generate,
            text,
            reference=reference_bytes,
            limiter=self._limiter,
        )
        encoded = await asyncio.to_thread(encode_webp, raw, quality=self._webp_quality)
        ref = await self._caller.call(f"store_image:{key}", self._artifacts.put, job_id, key, encoded)
        logger.info("illustrated job_id=%s key=%s raw_bytes=%s webp_bytes=%s", job_id, key, len(raw), len(encoded))
        return ref
