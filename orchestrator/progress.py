"""Durable progress recording plus best-effort fan-out to live observers."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator, Dict, Optional, Set

from core import ProgressEvent, Stage

from .store import InMemoryJobStore


logger = logging.getLogger(__name__)


class ProgressBroadcaster:
    """Per-job broadcast groups. Observers only ever receive."""

    def __init__(self, *, max_queue_size: int = 256) -> None:
        self._groups: Dict[str, Set[asyncio.Queue]] = {}
        self._max_queue_size = max(1, int(max_queue_size))

    def join(self, job_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._groups.setdefault(job_id, set()).add(queue)
        return queue

    def leave(self, job_id: str, queue: asyncio.Queue) -> None:
        group = self._groups.get(job_id)
        if not group:
            return
        group.discard(queue)
        if not group:
            self._groups.pop(job_id, None)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._groups.get(job_id, ()))

    @asynccontextmanager
    async def subscribe(self, job_id: str) -> AsyncIterator[asyncio.Queue]:
        queue = self.join(job_id)
        try:
            yield queue
        finally:
            self.leave(job_id, queue)

    async def publish(self, event: ProgressEvent) -> int:
        """Deliver to every subscriber of event.job_id; returns the delivery count."""
        delivered = 0
        for queue in list(self._groups.get(event.job_id, ())):
            if queue.full():
                # slow observer: drop its oldest event
                queue.get_nowait()
            queue.put_nowait(event)
            delivered += 1
        return delivered


class ProgressSink:
    """Persists stage/progress first, then broadcasts the same update."""

    def __init__(self, store: InMemoryJobStore, broadcaster: Optional[ProgressBroadcaster] = None) -> None:
        self._store = store
        self._broadcaster = broadcaster

    async def record(
        self,
        job_id: str,
        stage: Stage,
        progress: Optional[int] = None,
        *,
        message: Optional[str] = None,
    ) -> ProgressEvent:
        job = await self._store.aupdate_progress(job_id, stage, progress)
        event = ProgressEvent(job_id=job_id, stage=job.stage, progress=job.progress, message=message)
        logger.info("pipeline_update job_id=%s stage=%s progress=%s", job_id, job.stage.value, job.progress)
        await self._publish(event)
        return event

    async def fail(self, job_id: str, message: str) -> ProgressEvent:
        job = await self._store.aupdate_progress(job_id, Stage.ERROR, error=message)
        event = ProgressEvent(
            job_id=job_id,
            stage=job.stage,
            progress=job.progress,
            kind="pipeline_error",
            message=message,
        )
        logger.error("pipeline_error job_id=%s progress=%s error=%s", job_id, job.progress, message)
        await self._publish(event)
        return event

    async def log(self, job_id: str, message: str) -> Optional[ProgressEvent]:
        """Observer-only log line; nothing is persisted."""
        job = self._store.get_job(job_id)
        if job is None:
            return None
        event = ProgressEvent(
            job_id=job_id,
            stage=job.stage,
            progress=job.progress,
            kind="log_update",
            message=message,
        )
        await self._publish(event)
        return event

    async def _publish(self, event: ProgressEvent) -> None:
        if self._broadcaster is None:
            return
        try:
            await self._broadcaster.publish(event)
        except Exception:
            logger.exception("progress_publish_failed job_id=%s kind=%s", event.job_id, event.kind)
