"""Unit tests for job identity, locking and the job record lifecycle."""
import asyncio

import pytest

from pagepersona.jobs import JobManager, JobStage, JobStatus, compute_job_id
from pagepersona.jobs.manager import job_key, lock_key
from pagepersona.store import MemoryStore, SharedStore


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def manager(store):
    return JobManager(store, job_ttl_seconds=3600, lock_ttl_seconds=300)


def test_job_id_is_deterministic_32_hex():
    a = compute_job_id("https://example.com", "robot", {"a": 1, "b": 2})
    b = compute_job_id("https://example.com", "robot", {"b": 2, "a": 1})
    assert a == b
    assert len(a) == 32
    int(a, 16)


def test_job_id_differs_per_input():
    base = compute_job_id("https://example.com", "robot")
    assert compute_job_id("https://example.com", "eli5") != base
    assert compute_job_id("https://example.org", "robot") != base
    assert compute_job_id("https://example.com", "robot", {"x": 1}) != base


def test_job_id_treats_missing_options_as_empty():
    assert compute_job_id("u", "robot", None) == compute_job_id("u", "robot", {})


def test_key_layout():
    assert job_key("abc") == "job:abc"
    assert lock_key("abc") == "job:lock:abc"


@pytest.mark.asyncio
async def test_only_one_concurrent_acquirer_wins(manager):
    results = await asyncio.gather(*(manager.acquire_lock("j1") for _ in range(10)))
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_lock_expires_after_ttl(manager, clock):
    assert await manager.acquire_lock("j1")
    clock.advance(299)
    assert not await manager.acquire_lock("j1")
    clock.advance(1)
    assert await manager.acquire_lock("j1")


@pytest.mark.asyncio
async def test_release_lock_is_idempotent(manager):
    assert await manager.acquire_lock("j1")
    await manager.release_lock("j1")
    await manager.release_lock("j1")
    assert await manager.acquire_lock("j1")


@pytest.mark.asyncio
async def test_renew_lock_only_when_held(manager, store, clock):
    assert not await manager.renew_lock("j1")
    await manager.acquire_lock("j1")
    clock.advance(200)
    assert await manager.renew_lock("j1")
    assert store.ttl(lock_key("j1")) == pytest.approx(300)


@pytest.mark.asyncio
async def test_create_then_get(manager):
    created = await manager.create_job("j1")
    fetched = await manager.get_job("j1")
    assert created.status == JobStatus.QUEUED
    assert fetched is not None
    assert fetched.job_id == "j1"
    assert fetched.progress == 0


@pytest.mark.asyncio
async def test_get_missing_or_expired_is_none(manager, clock):
    assert await manager.get_job("nope") is None
    await manager.create_job("j1")
    clock.advance(3600)
    assert await manager.get_job("j1") is None


@pytest.mark.asyncio
async def test_update_refreshes_ttl_and_timestamp(manager, store, clock):
    created = await manager.create_job("j1")
    clock.advance(3000)
    updated = await manager.update_job_progress("j1", JobStage.CLEAN, 30)
    assert updated.status == JobStatus.RUNNING
    assert updated.stage == JobStage.CLEAN
    assert updated.progress == 30
    assert updated.updated_at >= created.updated_at
    assert store.ttl(job_key("j1")) == pytest.approx(3600)

    clock.advance(3000)
    assert await manager.get_job("j1") is not None


@pytest.mark.asyncio
async def test_update_does_not_create(manager):
    assert await manager.update_job("ghost", status=JobStatus.RUNNING) is None
    assert await manager.get_job("ghost") is None


@pytest.mark.asyncio
async def test_progress_is_clamped(manager):
    await manager.create_job("j1")
    job = await manager.update_job_progress("j1", JobStage.PERSIST, 150)
    assert job.progress == 100


@pytest.mark.asyncio
async def test_terminal_records_are_not_modified(manager):
    await manager.create_job("j1")
    done = await manager.complete_job("j1", {"ok": True}, cache_key="transform:robot:x")
    assert done.status == JobStatus.DONE
    assert done.progress == 100
    assert done.cache_key == "transform:robot:x"

    assert await manager.update_job_progress("j1", JobStage.FETCH, 10) is None
    assert await manager.fail_job("j1", "late failure") is None
    job = await manager.get_job("j1")
    assert job.status == JobStatus.DONE
    assert job.result == {"ok": True}


@pytest.mark.asyncio
async def test_fail_job_records_message(manager):
    await manager.create_job("j1")
    job = await manager.fail_job("j1", RuntimeError("upstream exploded"))
    assert job.status == JobStatus.ERROR
    assert job.error == "upstream exploded"
    assert job.result is None


@pytest.mark.asyncio
async def test_create_overwrites_errored_job(manager):
    await manager.create_job("j1")
    await manager.fail_job("j1", "boom")
    job = await manager.create_job("j1")
    assert job.status == JobStatus.QUEUED
    assert (await manager.get_job("j1")).error is None


@pytest.mark.asyncio
async def test_unreadable_record_reads_as_absent(manager, store):
    await store.setex(job_key("j1"), 60, "{not json")
    assert await manager.get_job("j1") is None


@pytest.mark.asyncio
async def test_store_outage_degrades_conservatively():
    manager = JobManager(SharedStore(disabled=True), job_ttl_seconds=3600, lock_ttl_seconds=300)
    assert await manager.acquire_lock("j1") is False
    await manager.release_lock("j1")
    assert await manager.get_job("j1") is None
    assert await manager.update_job_progress("j1", JobStage.CLEAN, 30) is None
    created = await manager.create_job("j1")
    assert created.status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_running_job_cannot_move_back_to_queued(manager):
    await manager.create_job("j1")
    await manager.update_job_progress("j1", JobStage.CLEAN, 30)

    assert await manager.update_job("j1", status=JobStatus.QUEUED) is None
    job = await manager.get_job("j1")
    assert job.status == JobStatus.RUNNING
    assert job.stage == JobStage.CLEAN


@pytest.mark.asyncio
async def test_unknown_status_value_is_a_noop(manager):
    await manager.create_job("j1")
    assert await manager.update_job("j1", status="paused") is None
    assert (await manager.get_job("j1")).status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_unserializable_result_does_not_raise(manager):
    await manager.create_job("j1")
    assert await manager.complete_job("j1", {"when": object()}) is None
    assert (await manager.get_job("j1")).status == JobStatus.QUEUED


def test_ensure_storable(manager):
    manager.ensure_storable("j1", {"text": "ok", "n": 1})
    with pytest.raises(ValueError):
        manager.ensure_storable("j1", {"when": object()})


@pytest.mark.asyncio
async def test_result_still_cached_follows_cache_entry(manager, store):
    await manager.create_job("j1")
    await store.setex("transform:robot:abc", 60, "{}")
    done = await manager.complete_job("j1", {"ok": True}, cache_key="transform:robot:abc")
    assert await manager.result_still_cached(done)

    await store.delete("transform:robot:abc")
    assert not await manager.result_still_cached(done)
    assert await manager.result_still_cached(done.model_copy(update={"cache_key": None}))
