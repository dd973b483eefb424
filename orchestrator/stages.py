"""
Stage runners: Shred, Analyze, Cover, Prompt, Image.

Each runner consumes what earlier stages persisted, produces its own outputs
idempotently and reports progress inside its window. Gating on progress is
done by the orchestrator through `is_pending`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Dict, List

from config import PipelineSettings
from core import Job, Stage, StageWindow, Unit, UnitStatus
from intelligence.agents.story_agent import build_character_sheet_prompt, build_cover_prompt
from utils.exceptions import ConsistencyError, InputError

from .progress import ProgressSink
from .store import InMemoryJobStore
from .throttle import RateLimiter, RetryingCaller

if TYPE_CHECKING:
    from intelligence.agents.story_agent import StoryAnalyst
    from processing.extractor import BaseTextExtractor
    from render.manager import Illustrator


logger = logging.getLogger(__name__)

CONTINUITY_SEED = "The story begins. Introduce the main characters and setting."

COVER_KEY = "book_cover"
CHARACTER_SHEET_KEY = "character_sheet"


def page_key(ordinal: int) -> str:
    return f"page_{ordinal}"


@dataclass
class StageContext:
    """Collaborators shared by every stage of one orchestrator."""

    store: InMemoryJobStore
    sink: ProgressSink
    caller: RetryingCaller
    text_limiter: RateLimiter
    settings: PipelineSettings
    extractor: "BaseTextExtractor"
    analyst: "StoryAnalyst"
    illustrator: "Illustrator"


class StageRunner:
    """Base runner. Subclasses set `stage` and implement `run`."""

    stage: Stage

    def __init__(self, ctx: StageContext) -> None:
        self.ctx = ctx

    def is_pending(self, job: Job, window: StageWindow) -> bool:
        return job.progress < window.exit

    async def run(self, job_id: str, window: StageWindow) -> None:
        raise NotImplementedError

    def _leading_text(self, job_id: str) -> str:
        units = self.ctx.store.list_units(job_id, limit=self.ctx.settings.leading_units)
        text = "\n\n".join(unit.content.strip() for unit in units if unit.content.strip())
        if not text:
            raise InputError("No readable leading pages", {"job_id": job_id})
        return text

    def _capped_units(self, job_id: str) -> List[Unit]:
        return self.ctx.store.list_units(job_id, max_ordinal=self.ctx.settings.processing_cap)


class ShredStage(StageRunner):
    stage = Stage.SHREDDING

    def is_pending(self, job: Job, window: StageWindow) -> bool:
        return self.ctx.store.count_units(job.id) == 0 or job.progress < window.exit

    async def run(self, job_id: str, window: StageWindow) -> None:
        store = self.ctx.store
        existing = store.count_units(job_id)
        if existing:
            logger.info("shred_skip job_id=%s units=%s", job_id, existing)
            job = store.require_job(job_id)
            if job.total_units != existing:
                await store.aupdate_job(job_id, total_units=existing)
            return

        job = store.require_job(job_id)
        if not job.source_path:
            raise InputError("Book Not Uploaded", {"job_id": job_id})

        pages = await asyncio.to_thread(self.ctx.extractor.extract, job.source_path)
        pages = [page for page in pages if str(page).strip()]
        if not pages:
            raise InputError("No readable pages in document", {"job_id": job_id, "source": job.source_path})

        await store.ainsert_units(job_id, pages)
        await store.aupdate_job(job_id, total_units=len(pages))
        logger.info("shred_done job_id=%s units=%s", job_id, len(pages))
        await self.ctx.sink.log(job_id, f"Book split into {len(pages)} pages.")


class AnalyzeStage(StageRunner):
    stage = Stage.ANALYZING

    async def run(self, job_id: str, window: StageWindow) -> None:
        ctx = self.ctx
        job = ctx.store.require_job(job_id)
        if job.style_guide is not None and job.reference_artifact:
            logger.info("analyze_skip job_id=%s", job_id)
            return

        style = job.style_guide
        if style is None:
            text = self._leading_text(job_id)
            style = await ctx.caller.call(
                "analyze_style",
                ctx.analyst.analyze_style,
                text,
                limiter=ctx.text_limiter,
            )
            await ctx.store.aupdate_job(job_id, style_guide=style, author=style.author or job.author)
            await ctx.sink.log(job_id, "Style guide extracted.")
            await ctx.sink.record(job_id, self.stage, window.at(1, 2))

        if not job.reference_artifact:
            reference = await ctx.illustrator.illustrate(
                build_character_sheet_prompt(style),
                job_id,
                CHARACTER_SHEET_KEY,
            )
            await ctx.store.aupdate_job(job_id, reference_artifact=reference)
            await ctx.sink.log(job_id, "Character sheet generated.")


class CoverStage(StageRunner):
    stage = Stage.GENERATING_COVER

    async def run(self, job_id: str, window: StageWindow) -> None:
        ctx = self.ctx
        job = ctx.store.require_job(job_id)
        if job.has_generated_cover:
            logger.info("cover_skip job_id=%s", job_id)
            return

        prompt = build_cover_prompt(self._leading_text(job_id), max_chars=ctx.settings.cover_snippet_chars)
        cover = await ctx.illustrator.illustrate(prompt, job_id, COVER_KEY)
        await ctx.store.aupdate_job(job_id, cover_artifact=cover)
        await ctx.sink.log(job_id, "Cover generated.")


class PromptStage(StageRunner):
    """Sequential continuity loop: each page is prompted with the previous page's summary."""

    stage = Stage.GENERATING_PROMPTS

    async def run(self, job_id: str, window: StageWindow) -> None:
        ctx = self.ctx
        job = ctx.store.require_job(job_id)
        if job.style_guide is None:
            raise ConsistencyError("Style guide missing before prompt generation", {"job_id": job_id})

        units = self._capped_units(job_id)
        if not units:
            raise ConsistencyError("No pages to prompt", {"job_id": job_id})

        previous_summary = CONTINUITY_SEED
        for index, unit in enumerate(units, start=1):
            if unit.has_prompt(ctx.settings.min_prompt_chars):
                logger.debug("prompt_skip job_id=%s page=%s", job_id, unit.ordinal)
            else:
                prompt = await ctx.caller.call(
                    f"page_prompt:{unit.ordinal}",
                    ctx.analyst.page_prompt,
                    job.style_guide,
                    unit.content,
                    previous_summary,
                    limiter=ctx.text_limiter,
                )
                await ctx.store.aupdate_unit(job_id, unit.ordinal, prompt=prompt, status=UnitStatus.PROCESSING)
                await ctx.sink.log(job_id, f"Page {unit.ordinal} serialized into prompt.")

            previous_summary = await ctx.caller.call(
                f"summarize:{unit.ordinal}",
                ctx.analyst.summarize,
                unit.content,
                limiter=ctx.text_limiter,
            )
            await ctx.sink.record(job_id, self.stage, window.at(index, len(units)))


class ImageStage(StageRunner):
    stage = Stage.GENERATING_IMAGES

    async def run(self, job_id: str, window: StageWindow) -> None:
        ctx = self.ctx
        job = ctx.store.require_job(job_id)
        if not job.reference_artifact:
            raise ConsistencyError("Character sheet missing before illustration", {"job_id": job_id})

        prompted = [unit for unit in self._capped_units(job_id) if (unit.prompt or "").strip()]
        if not prompted:
            raise ConsistencyError("No page has a prompt to illustrate", {"job_id": job_id})

        pending = [unit for unit in prompted if not unit.artifact]
        done = len(prompted) - len(pending)
        if not pending:
            logger.info("images_skip job_id=%s pages=%s", job_id, done)
            return

        # a failing page keeps its prompt and `processing` status; resume retries it
        for unit in pending:
            artifact = await ctx.illustrator.illustrate(
                unit.prompt,
                job_id,
                page_key(unit.ordinal),
                reference=job.reference_artifact,
            )
            await ctx.store.aupdate_unit(job_id, unit.ordinal, artifact=artifact, status=UnitStatus.COMPLETED)
            done += 1
            await ctx.sink.log(job_id, f"Page {unit.ordinal} illustrated.")
            await ctx.sink.record(job_id, self.stage, window.at(done, len(prompted)))


def build_stage_runners(ctx: StageContext) -> Dict[Stage, StageRunner]:
    """Default runner per runnable stage."""
    runners = (ShredStage(ctx), AnalyzeStage(ctx), CoverStage(ctx), PromptStage(ctx), ImageStage(ctx))
    return {runner.stage: runner for runner in runners}
