"""Shared fakes and fixtures: no network, no wall-clock waits."""

from __future__ import annotations

from io import BytesIO
from typing import Dict, List, Optional

import pytest
from PIL import Image

from config import ImageSettings, LLMSettings, PipelineSettings, Settings, StorageSettings
from core import StyleGuide
from orchestrator import InMemoryJobStore
from processing.extractor import BaseTextExtractor
from render.adapters import BaseImageAdapter
from storage.artifact_store import LocalArtifactStore
from webapp.runtime import build_runtime


def png_bytes(color=(180, 40, 40), size=(8, 8)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeAPIError(Exception):
    """Shape of SDK errors: an HTTP status on the exception."""

    def __init__(self, status_code: int, message: str = "api error") -> None:
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(float(seconds))


class FakeExtractor(BaseTextExtractor):
    def __init__(self, pages: List[str]) -> None:
        self.pages = list(pages)
        self.calls: List[str] = []

    def extract(self, path: str) -> List[str]:
        self.calls.append(path)
        return list(self.pages)


class FakeAnalyst:
    """Records every call in order; failures are queued per page content."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.prompt_failures: Dict[str, List[Exception]] = {}
        self.style_failures: List[Exception] = []
        self.closed = False

    async def analyze_style(self, text: str) -> StyleGuide:
        self.calls.append(("analyze", text))
        if self.style_failures:
            raise self.style_failures.pop(0)
        return StyleGuide(
            art_style="Watercolor, soft light",
            characters="A girl with a red scarf",
            setting="A foggy harbor town",
            author="A. Writer",
        )

    async def page_prompt(self, style: StyleGuide, content: str, previous_summary: str) -> str:
        self.calls.append(("prompt", content, previous_summary))
        pending = self.prompt_failures.get(content)
        if pending:
            raise pending.pop(0)
        return f"Wide shot in watercolor showing {content}"

    async def summarize(self, content: str) -> str:
        self.calls.append(("summary", content))
        return f"summary of {content}"

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)

    def prompted_contents(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "prompt"]

    async def aclose(self) -> None:
        self.closed = True


class FakeImageAdapter(BaseImageAdapter):
    provider = "fake"

    def __init__(self) -> None:
        self.calls: List[dict] = []
        self.failures: List[Exception] = []
        self.prompt_failures: Dict[str, List[Exception]] = {}
        self.closed = False

    async def generate(
        self,
        prompt: str,
        *,
        reference: Optional[bytes] = None,
        reference_mime: str = "image/webp",
    ) -> bytes:
        self.calls.append({"prompt": prompt, "reference": reference})
        if self.failures:
            raise self.failures.pop(0)
        for fragment, pending in self.prompt_failures.items():
            if fragment in prompt and pending:
                raise pending.pop(0)
        return png_bytes()

    async def aclose(self) -> None:
        self.closed = True


PAGES = ["the lighthouse at dawn", "a storm over the bay", "the ship returns home"]


def make_settings(tmp_path, **pipeline_overrides) -> Settings:
    return Settings(
        pipeline=PipelineSettings(**pipeline_overrides),
        llm=LLMSettings(),
        image=ImageSettings(),
        storage=StorageSettings(
            job_store_path=str(tmp_path / "jobs.json"),
            artifact_dir=str(tmp_path / "artifacts"),
            upload_dir=str(tmp_path / "uploads"),
        ),
    )


class Harness:
    """A fully wired runtime over fakes plus handles on every fake."""

    def __init__(
        self,
        tmp_path,
        pages: Optional[List[str]] = None,
        store: Optional[InMemoryJobStore] = None,
        **pipeline_overrides,
    ) -> None:
        self.sleep = SleepRecorder()
        self.extractor = FakeExtractor(PAGES if pages is None else pages)
        self.analyst = FakeAnalyst()
        self.images = FakeImageAdapter()
        self.store = store if store is not None else InMemoryJobStore()
        self.artifacts = LocalArtifactStore(str(tmp_path / "artifacts"))
        self.runtime = build_runtime(
            make_settings(tmp_path, **pipeline_overrides),
            store=self.store,
            extractor=self.extractor,
            analyst=self.analyst,
            image_adapter=self.images,
            artifacts=self.artifacts,
            sleep=self.sleep,
        )

    @property
    def orchestrator(self):
        return self.runtime.orchestrator

    def new_job(self, title: str = "Harbor Tales", owner: str = "user_1") -> str:
        return self.store.create_job(owner, title, source_path="/books/harbor.txt").id


@pytest.fixture()
def harness(tmp_path) -> Harness:
    return Harness(tmp_path)
