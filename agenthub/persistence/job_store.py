"""
Job store adapters.

Both implementations hold serialized snapshots rather than live Job
objects, so a write is all-or-nothing and readers never observe a
half-applied update.
"""

import asyncio
import json
import logging
import os
import shutil
from typing import Optional

from agenthub.shared.config import StoreBackend, StoreConfig
from agenthub.shared.errors import StorageError
from agenthub.shared.interfaces import IJobStore
from agenthub.shared.models import ACTIVE_STATUSES, Job, JobStatus

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = {status.value for status in ACTIVE_STATUSES}


def _newest_first(rows: list[dict]) -> list[dict]:
    # Rows arrive in insertion order; reversing first keeps later inserts ahead on equal timestamps
    return sorted(reversed(rows), key=lambda row: row.get("created_at") or "", reverse=True)


def _is_terminal(row: dict) -> bool:
    return JobStatus(row["status"]).is_terminal


class InMemoryJobStore(IJobStore):
    """Process-local store. Default backend and the one tests use."""

    def __init__(self):
        self._rows: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, job: Job) -> str:
        async with self._lock:
            if job.id in self._rows:
                raise StorageError(f"Job {job.id} already exists")
            self._rows[job.id] = job.to_dict()
        return job.id

    async def update_job(self, job_id: str, fields: dict) -> None:
        async with self._lock:
            row = self._rows.get(job_id)
            if row is None:
                raise StorageError(f"Job {job_id} does not exist")
            self._rows[job_id] = {**row, **fields}

    async def get_job(self, job_id: str, tenant_id: str) -> Optional[Job]:
        async with self._lock:
            row = self._rows.get(job_id)
        if row is None or row["tenant_id"] != tenant_id:
            return None
        return Job.from_dict(row)

    async def list_recent_jobs(self, tenant_id: str, limit: int) -> list[Job]:
        async with self._lock:
            rows = [row for row in self._rows.values() if row["tenant_id"] == tenant_id]
        return [Job.from_dict(row) for row in _newest_first(rows)[:limit]]

    async def list_active_jobs(self) -> list[Job]:
        async with self._lock:
            rows = [row for row in self._rows.values() if row["status"] in _ACTIVE_VALUES]
        return [Job.from_dict(row) for row in rows]

    async def purge_terminal_jobs(self, tenant_id: str) -> int:
        async with self._lock:
            doomed = [
                job_id for job_id, row in self._rows.items()
                if row["tenant_id"] == tenant_id and _is_terminal(row)
            ]
            for job_id in doomed:
                del self._rows[job_id]
        return len(doomed)


class JSONJobStore(IJobStore):
    """Persistent JSON-file job store. Survives process restarts."""

    def __init__(self, config: StoreConfig):
        self._config = config
        self._lock = asyncio.Lock()
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        directory = os.path.dirname(self._config.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self._config.file_path):
            self._write_raw({"jobs": {}})

    def _read_raw(self) -> dict:
        try:
            with open(self._config.file_path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return {"jobs": {}}
        except (json.JSONDecodeError, OSError) as e:
            raise StorageError(f"Job store unreadable: {e}") from e

    def _write_raw(self, data: dict) -> None:
        try:
            if self._config.backup_on_write and os.path.exists(self._config.file_path):
                shutil.copy2(self._config.file_path, self._config.file_path + ".bak")
            tmp_path = self._config.file_path + ".tmp"
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self._config.file_path)
        except OSError as e:
            raise StorageError(f"Job store write failed: {e}") from e

    async def create_job(self, job: Job) -> str:
        async with self._lock:
            data = self._read_raw()
            jobs = data.setdefault("jobs", {})
            if job.id in jobs:
                raise StorageError(f"Job {job.id} already exists")
            jobs[job.id] = job.to_dict()
            self._write_raw(data)
        logger.debug(f"Job row created: {job.id}")
        return job.id

    async def update_job(self, job_id: str, fields: dict) -> None:
        async with self._lock:
            data = self._read_raw()
            jobs = data.setdefault("jobs", {})
            if job_id not in jobs:
                raise StorageError(f"Job {job_id} does not exist")
            jobs[job_id] = {**jobs[job_id], **fields}
            self._write_raw(data)

    async def get_job(self, job_id: str, tenant_id: str) -> Optional[Job]:
        async with self._lock:
            row = self._read_raw().get("jobs", {}).get(job_id)
        if row is None or row["tenant_id"] != tenant_id:
            return None
        return Job.from_dict(row)

    async def list_recent_jobs(self, tenant_id: str, limit: int) -> list[Job]:
        async with self._lock:
            rows = [
                row for row in self._read_raw().get("jobs", {}).values()
                if row["tenant_id"] == tenant_id
            ]
        return [Job.from_dict(row) for row in _newest_first(rows)[:limit]]

    async def list_active_jobs(self) -> list[Job]:
        async with self._lock:
            rows = [
                row for row in self._read_raw().get("jobs", {}).values()
                if row["status"] in _ACTIVE_VALUES
            ]
        return [Job.from_dict(row) for row in rows]

    async def purge_terminal_jobs(self, tenant_id: str) -> int:
        async with self._lock:
            data = self._read_raw()
            jobs = data.get("jobs", {})
            doomed = [
                job_id for job_id, row in jobs.items()
                if row["tenant_id"] == tenant_id and _is_terminal(row)
            ]
            for job_id in doomed:
                del jobs[job_id]
            if doomed:
                self._write_raw(data)
                logger.info(f"Purged {len(doomed)} job row(s) for tenant {tenant_id}")
        return len(doomed)


def create_job_store(config: StoreConfig) -> IJobStore:
    """Factory: pick the backend named in configuration."""
    if config.backend == StoreBackend.JSON:
        logger.info(f"Using JSON job store at {config.file_path}")
        return JSONJobStore(config)
    logger.info("Using in-memory job store")
    return InMemoryJobStore()
