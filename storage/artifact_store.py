"""
Artifact Store
Generated images keyed by (job id, logical key); re-uploading a key overwrites it
"""
from abc import ABC, abstractmethod
import asyncio
import logging
import os
from pathlib import Path
import re
from typing import Optional
from uuid import uuid4

import httpx

from utils.exceptions import StorageError


logger = logging.getLogger(__name__)

_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _check_component(value: str, label: str) -> str:
    text = str(value or "").strip()
    if not _SAFE_COMPONENT.match(text) or ".." in text:
        raise StorageError(f"Invalid artifact {label}: {value!r}")
    return text


class BaseArtifactStore(ABC):
    """
    Artifact storage abstraction
    """

    @abstractmethod
    async def put(self, job_id: str, key: str, payload: bytes, *, suffix: str = ".webp") -> str:
        """Store payload and return a resolvable reference (URL or path)"""
        pass

    @abstractmethod
    async def read(self, ref: str) -> bytes:
        """Bytes behind a reference returned by put (or any http(s) URL)"""
        pass


class LocalArtifactStore(BaseArtifactStore):
    """
    Filesystem store under `root/<job_id>/<key><suffix>`

    With `public_base_url` set, references are URLs under that prefix (the
    directory is expected to be served statically); otherwise they are
    absolute file paths.
    """

    def __init__(
        self,
        root: str = "./data/artifacts",
        public_base_url: Optional[str] = None,
        http_timeout: float = 30.0,
    ):
        self.root = Path(root).resolve()
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.http_timeout = http_timeout

    def path_for(self, job_id: str, key: str, suffix: str = ".webp") -> Path:
        return self.root / _check_component(job_id, "job id") / f"{_check_component(key, 'key')}{suffix}"

    async def put(self, job_id: str, key: str, payload: bytes, *, suffix: str = ".webp") -> str:
        if not payload:
            raise StorageError("Refusing to store an empty artifact", {"job_id": job_id, "key": key})
        path = self.path_for(job_id, key, suffix)
        await asyncio.to_thread(self._write_atomic, path, payload)
        ref = self._ref_for(path)
        logger.info("artifact_stored job_id=%s key=%s bytes=%s", job_id, key, len(payload))
        return ref

    async def read(self, ref: str) -> bytes:
        local = self._local_path(ref)
        if local is not None:
            try:
                return await asyncio.to_thread(local.read_bytes)
            except OSError as exc:
                raise StorageError(f"Failed to read artifact: {exc}", {"ref": ref}) from exc

        async with httpx.AsyncClient(timeout=self.http_timeout, follow_redirects=True) as client:
            response = await client.get(ref)
            response.raise_for_status()
            return response.content

    def _ref_for(self, path: Path) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{path.relative_to(self.root).as_posix()}"
        return str(path)

    def _local_path(self, ref: str) -> Optional[Path]:
        """Local file behind `ref`, or None for a foreign URL."""
        text = str(ref or "").strip()
        if not text:
            raise StorageError("Empty artifact reference")
        if self.public_base_url and text.startswith(self.public_base_url + "/"):
            relative = text[len(self.public_base_url) + 1:]
            return self.root / relative
        if text.startswith(("http://", "https://")):
            return None
        return Path(text)

    @staticmethod
    def _write_atomic(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.parent / f".{path.name}.{uuid4().hex}.tmp"
        try:
            tmp.write_bytes(payload)
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write artifact: {exc}", {"path": str(path)}) from exc
