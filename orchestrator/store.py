"""Job and page persistence: in-memory store plus a JSON-file backed variant."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from core import COMPLETED_PROGRESS, ACTIVE_STAGES, Job, Stage, Unit, UnitStatus, is_valid_transition
from utils.exceptions import ConsistencyError, InvalidTransitionError, JobNotFoundError, StorageError


logger = logging.getLogger(__name__)

_JOB_FIELDS = {"style_guide", "author", "cover_artifact", "reference_artifact", "total_units", "source_path"}
_UNIT_FIELDS = {"prompt", "artifact", "status"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_job_id() -> str:
    return f"job_{_utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"


class InMemoryJobStore:
    """
    Thread-safe store for jobs and their pages. Reads return copies.

    Mutators work on a copy and swap it in; when the commit fails the previous
    record is put back, so memory never gets ahead of what was persisted.
    The `a*` variants run the same mutation in a worker thread for callers on
    the event loop.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._units: Dict[str, Dict[int, Unit]] = {}
        self._lock = RLock()

    def create_job(self, owner_id: str, title: str, source_path: Optional[str] = None) -> Job:
        with self._lock:
            job = Job(id=_new_job_id(), owner_id=owner_id, title=str(title).strip(), source_path=source_path)
            self._jobs[job.id] = job
            self._units[job.id] = {}

            def restore() -> None:
                self._jobs.pop(job.id, None)
                self._units.pop(job.id, None)

            self._commit_or_restore(restore)
            return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def find_latest(self, owner_id: str, title: str) -> Optional[Job]:
        """Most recently created job of `owner_id` with exactly this title."""
        key = str(title or "").strip()
        with self._lock:
            matches = [job for job in self._jobs.values() if job.owner_id == owner_id and job.title == key]
            if not matches:
                return None
            latest = max(matches, key=lambda job: job.timestamps.created_at)
            return latest.model_copy(deep=True)

    def list_jobs(self, owner_id: Optional[str] = None) -> List[Job]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if owner_id is None or job.owner_id == owner_id]
            jobs.sort(key=lambda job: job.timestamps.created_at, reverse=True)
            return [job.model_copy(deep=True) for job in jobs]

    def update_job(self, job_id: str, **fields: Any) -> Job:
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"unsupported job fields: {sorted(unknown)}")
        with self._lock:
            previous = self._get_locked(job_id)
            job = previous.model_copy(deep=True)
            for name, value in fields.items():
                setattr(job, name, value)
            job.timestamps.updated_at = _utcnow()
            self._swap_job(previous, job)
            return job.model_copy(deep=True)

    def update_progress(
        self,
        job_id: str,
        stage: Stage,
        progress: Optional[int] = None,
        *,
        error: Optional[str] = None,
    ) -> Job:
        """Move the job to `stage`. Progress never decreases; Error keeps the current value."""
        with self._lock:
            previous = self._get_locked(job_id)
            if not is_valid_transition(previous.stage, stage):
                raise InvalidTransitionError(previous.stage.value, stage.value, job_id=job_id)
            job = previous.model_copy(deep=True)

            now = _utcnow()
            if stage == Stage.ERROR:
                job.error = str(error or job.error or "pipeline failed")
            elif stage == Stage.COMPLETED:
                job.progress = COMPLETED_PROGRESS
                job.error = None
                job.timestamps.completed_at = now
            else:
                if progress is not None:
                    clamped = max(0, min(COMPLETED_PROGRESS, int(progress)))
                    if clamped < job.progress:
                        logger.debug(
                            "progress_clamped job_id=%s requested=%s kept=%s", job_id, clamped, job.progress
                        )
                    job.progress = max(job.progress, clamped)
                if stage == Stage.RESUMING:
                    job.error = None
                if stage in ACTIVE_STAGES:
                    job.timestamps.started_at = job.timestamps.started_at or now

            job.stage = stage
            job.timestamps.updated_at = now
            self._swap_job(previous, job)
            return job.model_copy(deep=True)

    def insert_units(self, job_id: str, contents: Sequence[str]) -> List[Unit]:
        """Bulk-create pages with ordinals 1..n. A job's pages are created exactly once."""
        with self._lock:
            self._get_locked(job_id)
            bucket = self._units.setdefault(job_id, {})
            if bucket:
                raise ConsistencyError(
                    "Pages already exist for this job", {"job_id": job_id, "count": len(bucket)}
                )
            created = [
                Unit(job_id=job_id, ordinal=ordinal, content=str(content))
                for ordinal, content in enumerate(contents, start=1)
            ]
            for unit in created:
                bucket[unit.ordinal] = unit
            self._commit_or_restore(bucket.clear)
            return [unit.model_copy(deep=True) for unit in created]

    def list_units(
        self,
        job_id: str,
        *,
        max_ordinal: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Unit]:
        with self._lock:
            bucket = self._units.get(job_id, {})
            units = [bucket[key] for key in sorted(bucket)]
        if max_ordinal is not None:
            units = [unit for unit in units if unit.ordinal <= max_ordinal]
        if limit is not None:
            units = units[: max(0, int(limit))]
        return [unit.model_copy(deep=True) for unit in units]

    def count_units(self, job_id: str) -> int:
        with self._lock:
            return len(self._units.get(job_id, {}))

    def update_unit(self, job_id: str, ordinal: int, **fields: Any) -> Unit:
        unknown = set(fields) - _UNIT_FIELDS
        if unknown:
            raise ValueError(f"unsupported page fields: {sorted(unknown)}")
        with self._lock:
            bucket = self._units.get(job_id, {})
            previous_unit = bucket.get(int(ordinal))
            if previous_unit is None:
                raise ConsistencyError("Page not found", {"job_id": job_id, "ordinal": ordinal})
            unit = previous_unit.model_copy(deep=True)
            for name, value in fields.items():
                setattr(unit, name, UnitStatus(value) if name == "status" else value)
            previous_job = self._jobs.get(job_id)
            bucket[unit.ordinal] = unit
            if previous_job is not None:
                job = previous_job.model_copy(deep=True)
                job.timestamps.updated_at = _utcnow()
                self._jobs[job_id] = job

            def restore() -> None:
                bucket[unit.ordinal] = previous_unit
                if previous_job is not None:
                    self._jobs[job_id] = previous_job

            self._commit_or_restore(restore)
            return unit.model_copy(deep=True)

    async def aupdate_job(self, job_id: str, **fields: Any) -> Job:
        return await asyncio.to_thread(self.update_job, job_id, **fields)

    async def aupdate_progress(
        self,
        job_id: str,
        stage: Stage,
        progress: Optional[int] = None,
        *,
        error: Optional[str] = None,
    ) -> Job:
        return await asyncio.to_thread(self.update_progress, job_id, stage, progress, error=error)

    async def ainsert_units(self, job_id: str, contents: Sequence[str]) -> List[Unit]:
        return await asyncio.to_thread(self.insert_units, job_id, contents)

    async def aupdate_unit(self, job_id: str, ordinal: int, **fields: Any) -> Unit:
        return await asyncio.to_thread(self.update_unit, job_id, ordinal, **fields)

    def _get_locked(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _swap_job(self, previous: Job, job: Job) -> None:
        self._jobs[job.id] = job

        def restore() -> None:
            self._jobs[job.id] = previous

        self._commit_or_restore(restore)

    def _commit_or_restore(self, restore: Callable[[], None]) -> None:
        try:
            self._commit()
        except StorageError:
            restore()
            raise

    def _commit(self) -> None:
        """Called under the lock after every mutation."""
        return None


class JsonFileJobStore(InMemoryJobStore):
    """Store that snapshots every mutation to a JSON file so jobs survive restarts."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read job store: {exc}", {"path": str(self._path)}) from exc

        for raw in payload.get("jobs") or []:
            job = Job.model_validate(raw)
            self._jobs[job.id] = job
            self._units.setdefault(job.id, {})
        for raw in payload.get("units") or []:
            unit = Unit.model_validate(raw)
            self._units.setdefault(unit.job_id, {})[unit.ordinal] = unit
        logger.info("job_store_loaded path=%s jobs=%s", self._path, len(self._jobs))

    def _commit(self) -> None:
        payload = {
            "jobs": [job.model_dump(mode="json") for job in self._jobs.values()],
            "units": [
                unit.model_dump(mode="json")
                for bucket in self._units.values()
                for unit in bucket.values()
            ],
        }
        tmp = self._path.parent / f".{self._path.name}.{uuid4().hex}.tmp"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write job store: {exc}", {"path": str(self._path)}) from exc
