from __future__ import annotations

import json

import pytest

from core import Stage, UnitStatus
from orchestrator.store import InMemoryJobStore, JsonFileJobStore
from utils.exceptions import ConsistencyError, InvalidTransitionError, JobNotFoundError, StorageError


def test_create_and_find_latest_by_owner_and_title() -> None:
    store = InMemoryJobStore()
    first = store.create_job("alice", "Moby Dick", source_path="/books/a.pdf")
    store.create_job("bob", "Moby Dick", source_path="/books/b.pdf")

    found = store.find_latest("alice", " Moby Dick ")
    assert found is not None
    assert found.id == first.id
    assert store.find_latest("alice", "Other") is None
    assert [job.owner_id for job in store.list_jobs("bob")] == ["bob"]


def test_reads_are_copies() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")
    job.progress = 90

    assert store.require_job(job.id).progress == 0


def test_progress_never_decreases() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")

    store.update_progress(job.id, Stage.SHREDDING, 20)
    store.update_progress(job.id, Stage.ANALYZING, 10)

    saved = store.require_job(job.id)
    assert saved.stage == Stage.ANALYZING
    assert saved.progress == 20
    assert saved.timestamps.started_at is not None


def test_error_keeps_progress_and_resuming_clears_error() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")
    store.update_progress(job.id, Stage.GENERATING_PROMPTS, 80)

    failed = store.update_progress(job.id, Stage.ERROR, 5, error="quota")
    assert failed.progress == 80
    assert failed.error == "quota"

    with pytest.raises(InvalidTransitionError):
        store.update_progress(job.id, Stage.GENERATING_IMAGES, 90)

    resumed = store.update_progress(job.id, Stage.RESUMING)
    assert resumed.error is None
    assert resumed.progress == 80


def test_completed_pins_progress_and_rejects_further_changes() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")
    done = store.update_progress(job.id, Stage.COMPLETED)

    assert done.progress == 100
    assert done.timestamps.completed_at is not None
    with pytest.raises(InvalidTransitionError):
        store.update_progress(job.id, Stage.ERROR, error="late")


def test_backward_transition_rejected() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")
    store.update_progress(job.id, Stage.ANALYZING, 30)

    with pytest.raises(InvalidTransitionError):
        store.update_progress(job.id, Stage.SHREDDING, 15)


def test_units_are_created_once_with_contiguous_ordinals() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")

    units = store.insert_units(job.id, ["one", "two", "three"])
    assert [unit.ordinal for unit in units] == [1, 2, 3]
    assert store.count_units(job.id) == 3
    with pytest.raises(ConsistencyError):
        store.insert_units(job.id, ["again"])


def test_list_units_honors_cap_and_limit() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")
    store.insert_units(job.id, [f"page {n}" for n in range(1, 6)])

    assert [unit.ordinal for unit in store.list_units(job.id, max_ordinal=3)] == [1, 2, 3]
    assert [unit.ordinal for unit in store.list_units(job.id, limit=2)] == [1, 2]


def test_update_unit_and_rejects_unknown_fields() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")
    store.insert_units(job.id, ["one"])

    unit = store.update_unit(job.id, 1, prompt="a prompt", status="processing")
    assert unit.status == UnitStatus.PROCESSING
    with pytest.raises(ValueError):
        store.update_unit(job.id, 1, content="rewritten")
    with pytest.raises(ConsistencyError):
        store.update_unit(job.id, 9, prompt="x")
    with pytest.raises(ValueError):
        store.update_job(job.id, stage=Stage.COMPLETED)


def test_unknown_job_raises() -> None:
    store = InMemoryJobStore()
    with pytest.raises(JobNotFoundError):
        store.require_job("missing")
    with pytest.raises(JobNotFoundError):
        store.update_progress("missing", Stage.SHREDDING, 10)


def test_json_store_survives_reload(tmp_path) -> None:
    path = tmp_path / "state" / "jobs.json"
    store = JsonFileJobStore(path)
    job = store.create_job("alice", "Moby Dick", source_path="/books/a.pdf")
    store.insert_units(job.id, ["one", "two"])
    store.update_unit(job.id, 2, prompt="a storm", status=UnitStatus.PROCESSING)
    store.update_progress(job.id, Stage.SHREDDING, 20)

    reloaded = JsonFileJobStore(path)
    saved = reloaded.require_job(job.id)
    assert saved.stage == Stage.SHREDDING
    assert saved.progress == 20
    assert saved.source_path == "/books/a.pdf"
    units = reloaded.list_units(job.id)
    assert [unit.content for unit in units] == ["one", "two"]
    assert units[1].prompt == "a storm"
    assert units[1].status == UnitStatus.PROCESSING


def test_json_store_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / "jobs.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StorageError):
        JsonFileJobStore(path)


def test_json_store_writes_plain_json(tmp_path) -> None:
    path = tmp_path / "jobs.json"
    store = JsonFileJobStore(path)
    store.create_job("alice", "Moby Dick")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["jobs"][0]["title"] == "Moby Dick"
    assert payload["units"] == []


def test_failed_write_leaves_memory_matching_disk(tmp_path, monkeypatch) -> None:
    path = tmp_path / "jobs.json"
    store = JsonFileJobStore(path)
    job = store.create_job("alice", "Moby Dick")
    store.insert_units(job.id, ["one"])
    job_before = store.require_job(job.id).model_dump()
    unit_before = store.list_units(job.id)[0].model_dump()

    def refuse(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("orchestrator.store.os.replace", refuse)

    with pytest.raises(StorageError):
        store.update_progress(job.id, Stage.SHREDDING, 20)
    with pytest.raises(StorageError):
        store.update_job(job.id, author="Herman Melville")
    with pytest.raises(StorageError):
        store.update_unit(job.id, 1, prompt="a whale", status=UnitStatus.PROCESSING)
    with pytest.raises(StorageError):
        store.create_job("alice", "Billy Budd")

    assert store.require_job(job.id).model_dump() == job_before
    assert store.list_units(job.id)[0].model_dump() == unit_before
    assert store.find_latest("alice", "Billy Budd") is None
    monkeypatch.undo()
    reloaded = JsonFileJobStore(path)
    assert reloaded.require_job(job.id).model_dump() == job_before
    assert reloaded.list_units(job.id)[0].model_dump() == unit_before
    assert list(tmp_path.glob(".*.tmp")) == []


def test_failed_bulk_insert_leaves_job_without_pages(tmp_path, monkeypatch) -> None:
    store = JsonFileJobStore(tmp_path / "jobs.json")
    job = store.create_job("alice", "Moby Dick")

    def refuse(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("orchestrator.store.os.replace", refuse)

    with pytest.raises(StorageError):
        store.insert_units(job.id, ["one", "two"])
    assert store.count_units(job.id) == 0

    monkeypatch.undo()
    store.insert_units(job.id, ["one", "two"])
    assert store.count_units(job.id) == 2


@pytest.mark.asyncio
async def test_async_mutators_apply_the_same_changes() -> None:
    store = InMemoryJobStore()
    job = store.create_job("alice", "Moby Dick")

    await store.ainsert_units(job.id, ["one"])
    await store.aupdate_unit(job.id, 1, prompt="a whale", status=UnitStatus.PROCESSING)
    await store.aupdate_job(job.id, author="Herman Melville")
    moved = await store.aupdate_progress(job.id, Stage.SHREDDING, 20)

    assert moved.progress == 20
    assert store.require_job(job.id).author == "Herman Melville"
    assert store.list_units(job.id)[0].prompt == "a whale"
