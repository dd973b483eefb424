"""Duplicate-start protection: create, attach, resume or report an existing job."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from core import ACTIVE_STAGES, Job, Stage
from utils.exceptions import InputError, JobNotFoundError

from .store import InMemoryJobStore


logger = logging.getLogger(__name__)

# Stages a job may legitimately sit in while a task owns it.
_CLAIMED_STAGES = ACTIVE_STAGES | {Stage.UPLOADED, Stage.RESUMING}


class IntakeAction(str, Enum):
    CREATE = "create"
    ATTACH = "attach"
    RESUME = "resume"
    ALREADY_DONE = "already_done"


@dataclass
class IntakeDecision:
    action: IntakeAction
    job_id: str
    stage: Stage
    progress: int

    @property
    def needs_launch(self) -> bool:
        return self.action in (IntakeAction.CREATE, IntakeAction.RESUME)


class JobIntakeGuard:
    """
    Serializes start requests per (owner, title).

    Duplicate detection is by title only: two different documents sharing a
    title collide, and an edited re-upload counts as the same book.
    """

    def __init__(
        self,
        store: InMemoryJobStore,
        *,
        is_in_flight: Optional[Callable[[str], bool]] = None,
        stale_after: timedelta = timedelta(minutes=30),
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")
        self._store = store
        self._is_in_flight = is_in_flight
        self._stale_after = stale_after
        self._now = now
        self._key_locks: Dict[Tuple[str, str], Lock] = {}
        self._locks_guard = Lock()

    def admit(self, owner_id: str, title: str, source_path: Optional[str] = None) -> IntakeDecision:
        owner = str(owner_id or "").strip()
        key_title = str(title or "").strip()
        if not owner:
            raise InputError("Caller identity is required")
        if not key_title:
            raise InputError("Book title is required")

        with self._lock_for(owner, key_title):
            existing = self._store.find_latest(owner, key_title)
            if existing is None:
                if not source_path:
                    raise InputError("Book Not Uploaded")
                job = self._store.create_job(owner, key_title, source_path=source_path)
                logger.info("intake_create job_id=%s owner=%s title=%s", job.id, owner, key_title)
                return self._decision(IntakeAction.CREATE, job)
            return self._decide(existing)

    def admit_existing(self, job_id: str, owner_id: Optional[str] = None) -> IntakeDecision:
        """
        Same decision for a job addressed by id (explicit resume request).

        Raises:
            JobNotFoundError: unknown id, or owned by someone else
        """
        job = self._store.require_job(job_id)
        if owner_id is not None and job.owner_id != str(owner_id).strip():
            raise JobNotFoundError(job_id)
        with self._lock_for(job.owner_id, job.title):
            return self._decide(self._store.require_job(job_id))

    def _decide(self, existing: Job) -> IntakeDecision:
        if existing.is_finished:
            logger.info("intake_already_done job_id=%s", existing.id)
            return self._decision(IntakeAction.ALREADY_DONE, existing)

        if self.is_live(existing):
            logger.info(
                "intake_attach job_id=%s stage=%s progress=%s",
                existing.id,
                existing.stage.value,
                existing.progress,
            )
            return self._decision(IntakeAction.ATTACH, existing)

        resumed = self._store.update_progress(existing.id, Stage.RESUMING)
        logger.info(
            "intake_resume job_id=%s from_stage=%s progress=%s",
            existing.id,
            existing.stage.value,
            existing.progress,
        )
        return self._decision(IntakeAction.RESUME, resumed)

    def is_live(self, job: Job) -> bool:
        """True while some task plausibly still owns the job."""
        if self._is_in_flight is not None and self._is_in_flight(job.id):
            return True
        if job.stage not in _CLAIMED_STAGES:
            return False
        updated_at = job.timestamps.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return self._now() - updated_at < self._stale_after

    def _lock_for(self, owner_id: str, title: str) -> Lock:
        with self._locks_guard:
            return self._key_locks.setdefault((owner_id, title), Lock())

    @staticmethod
    def _decision(action: IntakeAction, job: Job) -> IntakeDecision:
        return IntakeDecision(action=action, job_id=job.id, stage=job.stage, progress=job.progress)
