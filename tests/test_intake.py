from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from core import Stage
from orchestrator import InMemoryJobStore, IntakeAction, JobIntakeGuard
from utils.exceptions import InputError, JobNotFoundError


class FrozenClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_first_request_creates_job() -> None:
    store = InMemoryJobStore()
    guard = JobIntakeGuard(store)

    decision = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")

    assert decision.action == IntakeAction.CREATE
    assert decision.needs_launch is True
    assert store.require_job(decision.job_id).stage == Stage.UPLOADED


def test_missing_document_or_identity_is_rejected() -> None:
    guard = JobIntakeGuard(InMemoryJobStore())

    with pytest.raises(InputError, match="Book Not Uploaded"):
        guard.admit("alice", "Moby Dick")
    with pytest.raises(InputError):
        guard.admit("", "Moby Dick", source_path="/books/a.pdf")
    with pytest.raises(InputError):
        guard.admit("alice", "  ", source_path="/books/a.pdf")


def test_fresh_duplicate_attaches_to_running_job() -> None:
    store = InMemoryJobStore()
    guard = JobIntakeGuard(store)
    first = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")
    store.update_progress(first.job_id, Stage.ANALYZING, 30)

    second = guard.admit("alice", "Moby Dick", source_path="/books/a2.pdf")

    assert second.action == IntakeAction.ATTACH
    assert second.job_id == first.job_id
    assert second.needs_launch is False
    assert len(store.list_jobs("alice")) == 1


def test_in_flight_job_attaches_even_when_stale() -> None:
    store = InMemoryJobStore()
    clock = FrozenClock()
    running = set()
    guard = JobIntakeGuard(store, is_in_flight=running.__contains__, stale_after=timedelta(minutes=5), now=clock)
    first = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")
    running.add(first.job_id)
    clock.now += timedelta(hours=2)

    assert guard.admit("alice", "Moby Dick").action == IntakeAction.ATTACH


def test_stale_active_job_is_resumed() -> None:
    store = InMemoryJobStore()
    clock = FrozenClock()
    guard = JobIntakeGuard(store, stale_after=timedelta(minutes=5), now=clock)
    first = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")
    store.update_progress(first.job_id, Stage.GENERATING_PROMPTS, 80)
    clock.now += timedelta(minutes=10)

    decision = guard.admit("alice", "Moby Dick")

    assert decision.action == IntakeAction.RESUME
    assert decision.job_id == first.job_id
    assert decision.stage == Stage.RESUMING
    assert decision.progress == 80


def test_errored_job_is_resumed() -> None:
    store = InMemoryJobStore()
    guard = JobIntakeGuard(store)
    first = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")
    store.update_progress(first.job_id, Stage.SHREDDING, 20)
    store.update_progress(first.job_id, Stage.ERROR, error="quota")

    decision = guard.admit("alice", "Moby Dick")

    assert decision.action == IntakeAction.RESUME
    assert store.require_job(first.job_id).error is None


def test_completed_job_is_reported_done() -> None:
    store = InMemoryJobStore()
    guard = JobIntakeGuard(store)
    first = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")
    store.update_progress(first.job_id, Stage.COMPLETED)

    decision = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")

    assert decision.action == IntakeAction.ALREADY_DONE
    assert decision.needs_launch is False
    assert decision.progress == 100


def test_same_title_for_other_owner_is_separate() -> None:
    store = InMemoryJobStore()
    guard = JobIntakeGuard(store)
    mine = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")
    theirs = guard.admit("bob", "Moby Dick", source_path="/books/b.pdf")

    assert theirs.action == IntakeAction.CREATE
    assert theirs.job_id != mine.job_id


def test_concurrent_duplicate_starts_create_exactly_one_job() -> None:
    store = InMemoryJobStore()
    guard = JobIntakeGuard(store)

    def _start(_: int):
        return guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")

    with ThreadPoolExecutor(max_workers=8) as pool:
        decisions = list(pool.map(_start, range(8)))

    actions = [decision.action for decision in decisions]
    assert actions.count(IntakeAction.CREATE) == 1
    assert actions.count(IntakeAction.ATTACH) == 7
    assert len({decision.job_id for decision in decisions}) == 1
    assert len(store.list_jobs()) == 1


def test_admit_existing_checks_owner() -> None:
    store = InMemoryJobStore()
    clock = FrozenClock()
    guard = JobIntakeGuard(store, stale_after=timedelta(minutes=5), now=clock)
    first = guard.admit("alice", "Moby Dick", source_path="/books/a.pdf")

    with pytest.raises(JobNotFoundError):
        guard.admit_existing(first.job_id, owner_id="mallory")
    with pytest.raises(JobNotFoundError):
        guard.admit_existing("job_missing")

    clock.now += timedelta(minutes=10)
    assert guard.admit_existing(first.job_id, owner_id="alice").action == IntakeAction.RESUME


def test_stale_after_must_be_positive() -> None:
    with pytest.raises(ValueError):
        JobIntakeGuard(InMemoryJobStore(), stale_after=timedelta(0))
