"""Pipeline orchestrator: derives the starting stage from persisted progress and runs the rest."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Sequence

from core import STAGE_WINDOWS, Stage, StageWindow

from .progress import ProgressSink
from .stages import StageRunner
from .store import InMemoryJobStore


logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    Re-entrant state machine over the stage window table.

    Every stage is gated by its runner's `is_pending` (progress below the
    window's exit by default), so calling `run` again on a job that already
    passed a threshold skips that stage.
    """

    def __init__(
        self,
        *,
        store: InMemoryJobStore,
        sink: ProgressSink,
        runners: Mapping[Stage, StageRunner],
        windows: Sequence[StageWindow] = STAGE_WINDOWS,
    ) -> None:
        self._store = store
        self._sink = sink
        self._runners = dict(runners)
        self._windows = tuple(windows)
        self._tasks: Dict[str, asyncio.Task] = {}

        missing = [window.stage.value for window in self._windows if window.stage not in self._runners]
        if missing:
            raise ValueError(f"no runner for stages: {missing}")

    async def run(self, job_id: str) -> None:
        """
        Execute every pending stage of `job_id` in forward order.

        Completed jobs and jobs in Error are left untouched. Any stage failure
        is recorded as Error with progress preserved; it is not re-raised.
        """
        job = self._store.require_job(job_id)
        if job.is_finished:
            logger.info("pipeline_noop_finished job_id=%s", job_id)
            return
        if job.stage == Stage.ERROR:
            logger.info("pipeline_noop_error job_id=%s (resume required)", job_id)
            return

        logger.info("pipeline_start job_id=%s stage=%s progress=%s", job_id, job.stage.value, job.progress)
        try:
            for window in self._windows:
                runner = self._runners[window.stage]
                job = self._store.require_job(job_id)
                if not runner.is_pending(job, window):
                    logger.debug("stage_skip job_id=%s stage=%s", job_id, window.stage.value)
                    continue

                await self._sink.record(job_id, window.stage, window.entry)
                await runner.run(job_id, window)
                await self._sink.record(job_id, window.stage, window.exit)

            await self._sink.record(job_id, Stage.COMPLETED, message="Pipeline completed.")
            logger.info("pipeline_completed job_id=%s", job_id)
        except Exception as exc:
            logger.exception("pipeline_failed job_id=%s", job_id)
            await self._sink.fail(job_id, str(exc) or exc.__class__.__name__)

    def launch(self, job_id: str) -> asyncio.Task:
        """
        Schedule `run` as a detached task; returns the existing task when one
        is already in flight for this job.
        """
        current = self._tasks.get(job_id)
        if current is not None and not current.done():
            return current

        task = asyncio.create_task(self._guarded_run(job_id), name=f"pipeline:{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _task, key=job_id: self._forget(key, _task))
        return task

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def _guarded_run(self, job_id: str) -> None:
        try:
            await self.run(job_id)
        except Exception:
            # run() records its own failures; this covers store errors outside a stage
            logger.exception("pipeline_task_crashed job_id=%s", job_id)

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            self._tasks.pop(job_id, None)
