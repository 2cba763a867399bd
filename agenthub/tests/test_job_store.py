"""
Tests for the job store adapters (in-memory and JSON file).
"""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from agenthub.persistence.job_store import (
    InMemoryJobStore, JSONJobStore, create_job_store,
)
from agenthub.shared.config import StoreBackend, StoreConfig
from agenthub.shared.errors import StorageError
from agenthub.shared.models import Job, JobStatus


def _job(tenant_id="T1", refs=("a", "b"), minutes_ago=0, status=JobStatus.QUEUED):
    created = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return Job(tenant_id=tenant_id, agent_type="falcon", item_refs=list(refs),
               created_at=created, status=status)


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_dir):
    if request.param == "memory":
        return InMemoryJobStore()
    return JSONJobStore(StoreConfig(backend=StoreBackend.JSON,
                                    file_path=os.path.join(tmp_dir, "jobs.json")))


@pytest.mark.asyncio
class TestJobStoreContract:
    async def test_create_and_get(self, store):
        job = _job()
        assert await store.create_job(job) == job.id
        loaded = await store.get_job(job.id, "T1")
        assert loaded.to_dict() == job.to_dict()

    async def test_get_is_tenant_scoped(self, store):
        job = _job()
        await store.create_job(job)
        assert await store.get_job(job.id, "T2") is None
        assert await store.get_job("job_missing", "T1") is None

    async def test_duplicate_create_rejected(self, store):
        job = _job()
        await store.create_job(job)
        with pytest.raises(StorageError):
            await store.create_job(job)

    async def test_partial_update(self, store):
        job = _job()
        await store.create_job(job)
        await store.update_job(job.id, {"status": "processing", "items_processed": 1})
        loaded = await store.get_job(job.id, "T1")
        assert loaded.status == JobStatus.PROCESSING
        assert loaded.items_processed == 1
        assert loaded.item_refs == ["a", "b"]

    async def test_update_missing_row(self, store):
        with pytest.raises(StorageError):
            await store.update_job("job_missing", {"status": "failed"})

    async def test_list_recent_newest_first(self, store):
        old, mid, new = _job(minutes_ago=10), _job(minutes_ago=5), _job(minutes_ago=0)
        for job in (mid, new, old):
            await store.create_job(job)
        await store.create_job(_job(tenant_id="T2"))

        jobs = await store.list_recent_jobs("T1", limit=10)
        assert [j.id for j in jobs] == [new.id, mid.id, old.id]
        assert [j.id for j in await store.list_recent_jobs("T1", limit=2)] == [new.id, mid.id]

    async def test_list_active_across_tenants(self, store):
        queued = _job()
        processing = _job(tenant_id="T2", status=JobStatus.PROCESSING)
        done = _job(status=JobStatus.COMPLETED)
        for job in (queued, processing, done):
            await store.create_job(job)
        active = {j.id for j in await store.list_active_jobs()}
        assert active == {queued.id, processing.id}

    async def test_purge_terminal(self, store):
        keep = _job()
        other_tenant = _job(tenant_id="T2", status=JobStatus.FAILED)
        await store.create_job(keep)
        await store.create_job(other_tenant)
        for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            await store.create_job(_job(status=status))

        assert await store.purge_terminal_jobs("T1") == 3
        assert [j.id for j in await store.list_recent_jobs("T1", 10)] == [keep.id]
        assert await store.get_job(other_tenant.id, "T2") is not None


@pytest.mark.asyncio
class TestJSONJobStore:
    async def test_survives_reopen(self, tmp_dir):
        config = StoreConfig(backend=StoreBackend.JSON, file_path=os.path.join(tmp_dir, "jobs.json"))
        job = _job()
        await JSONJobStore(config).create_job(job)

        reopened = JSONJobStore(config)
        assert (await reopened.get_job(job.id, "T1")).id == job.id

    async def test_creates_directory_and_backup(self, tmp_dir):
        path = os.path.join(tmp_dir, "nested", "jobs.json")
        store = JSONJobStore(StoreConfig(backend=StoreBackend.JSON, file_path=path))
        await store.create_job(_job())
        assert os.path.exists(path)
        assert os.path.exists(path + ".bak")
        with open(path) as f:
            assert len(json.load(f)["jobs"]) == 1

    async def test_corrupt_file_raises_storage_error(self, tmp_dir):
        path = os.path.join(tmp_dir, "jobs.json")
        store = JSONJobStore(StoreConfig(backend=StoreBackend.JSON, file_path=path))
        with open(path, "w") as f:
            f.write("{not json")
        with pytest.raises(StorageError, match="unreadable"):
            await store.list_active_jobs()


class TestFactory:
    def test_memory_default(self):
        assert isinstance(create_job_store(StoreConfig()), InMemoryJobStore)

    def test_json_backend(self, tmp_dir):
        config = StoreConfig(backend=StoreBackend.JSON, file_path=os.path.join(tmp_dir, "j.json"))
        assert isinstance(create_job_store(config), JSONJobStore)
