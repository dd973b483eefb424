"""Shared runtime singletons for the web app and CLI entrypoints."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, Optional

from config import Settings, get_settings
from core import Job
from intelligence.agents.story_agent import StoryAnalyst
from orchestrator import (
    InMemoryJobStore,
    IntakeDecision,
    JobIntakeGuard,
    JsonFileJobStore,
    PipelineOrchestrator,
    ProgressBroadcaster,
    ProgressSink,
    RateLimiter,
    RetryingCaller,
    StageContext,
    build_stage_runners,
)
from processing.extractor import BaseTextExtractor, DocumentTextExtractor
from render.adapters import BaseImageAdapter
from render.manager import Illustrator
from storage.artifact_store import BaseArtifactStore, LocalArtifactStore


SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class PipelineRuntime:
    settings: Settings
    store: InMemoryJobStore
    broadcaster: ProgressBroadcaster
    sink: ProgressSink
    orchestrator: PipelineOrchestrator
    guard: JobIntakeGuard
    analyst: Optional[StoryAnalyst] = None
    image_adapter: Optional[BaseImageAdapter] = None

    async def start(self, owner_id: str, title: str, source_path: Optional[str] = None) -> IntakeDecision:
        """Intake decision for (owner, title); launches the pipeline on create/resume."""
        decision = await asyncio.to_thread(self.guard.admit, owner_id, title, source_path=source_path)
        if decision.needs_launch:
            self.orchestrator.launch(decision.job_id)
        return decision

    async def resume(self, job_id: str, owner_id: Optional[str] = None) -> IntakeDecision:
        decision = await asyncio.to_thread(self.guard.admit_existing, job_id, owner_id=owner_id)
        if decision.needs_launch:
            self.orchestrator.launch(decision.job_id)
        return decision

    def active_job(self, owner_id: str) -> Optional[Job]:
        """Most recent job of `owner_id` that some task still owns."""
        for job in self.store.list_jobs(owner_id):
            if not job.is_finished and self.guard.is_live(job):
                return job
        return None

    async def aclose(self) -> None:
        """Release model clients. Running jobs are left to the staleness check."""
        if self.analyst is not None:
            await self.analyst.aclose()
        if self.image_adapter is not None:
            await self.image_adapter.aclose()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    store: Optional[InMemoryJobStore] = None,
    extractor: Optional[BaseTextExtractor] = None,
    analyst: Optional[StoryAnalyst] = None,
    image_adapter: Optional[BaseImageAdapter] = None,
    artifacts: Optional[BaseArtifactStore] = None,
    sleep: SleepFn = asyncio.sleep,
) -> PipelineRuntime:
    """
    Wire store, throttles, collaborators and orchestrator.

    Unset collaborators are built from settings (LLM_*, IMAGE_*, STORAGE_*);
    tests pass fakes and a no-op `sleep`.
    """
    settings = settings or get_settings()
    pipeline = settings.pipeline

    if store is None:
        store = JsonFileJobStore(Path(settings.storage.job_store_path))
    if extractor is None:
        extractor = DocumentTextExtractor(words_per_unit=pipeline.words_per_unit)
    if analyst is None:
        analyst = StoryAnalyst()
    if image_adapter is None:
        from render.adapters import get_image_adapter

        image_adapter = get_image_adapter()
    if artifacts is None:
        artifacts = LocalArtifactStore(
            settings.storage.artifact_dir,
            public_base_url=settings.storage.public_base_url,
        )

    caller = RetryingCaller(
        max_attempts=pipeline.retry_attempts,
        base_delay_s=pipeline.retry_base_delay_s,
        max_delay_s=pipeline.retry_max_delay_s,
        sleep=sleep,
    )
    text_limiter = RateLimiter(pipeline.prompt_interval_s, name="text", sleep=sleep)
    image_limiter = RateLimiter(pipeline.image_interval_s, name="image", sleep=sleep)

    broadcaster = ProgressBroadcaster()
    sink = ProgressSink(store, broadcaster)
    illustrator = Illustrator(
        adapter=image_adapter,
        artifacts=artifacts,
        caller=caller,
        limiter=image_limiter,
        webp_quality=settings.image.webp_quality,
    )
    ctx = StageContext(
        store=store,
        sink=sink,
        caller=caller,
        text_limiter=text_limiter,
        settings=pipeline,
        extractor=extractor,
        analyst=analyst,
        illustrator=illustrator,
    )
    orchestrator = PipelineOrchestrator(store=store, sink=sink, runners=build_stage_runners(ctx))
    guard = JobIntakeGuard(
        store,
        is_in_flight=orchestrator.is_running,
        stale_after=timedelta(seconds=pipeline.stale_after_s),
    )
    return PipelineRuntime(
        settings=settings,
        store=store,
        broadcaster=broadcaster,
        sink=sink,
        orchestrator=orchestrator,
        guard=guard,
        analyst=analyst,
        image_adapter=image_adapter,
    )


_RUNTIME: Optional[PipelineRuntime] = None


def get_runtime() -> PipelineRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


async def close_runtime() -> None:
    """Close the shared runtime if one was built; the next `get_runtime` builds afresh."""
    global _RUNTIME
    runtime, _RUNTIME = _RUNTIME, None
    if runtime is not None:
        await runtime.aclose()
