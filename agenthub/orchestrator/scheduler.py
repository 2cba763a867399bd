"""
Job Scheduler - accepts submissions, orders and drives execution, applies
retry and cancellation policy, and emits lifecycle transitions.

State machine:
  QUEUED -> PROCESSING -> {COMPLETED | FAILED | CANCELLED}
  FAILED -> QUEUED (retry, while retry_count < max_retries)

Ordering: priority descending, then created_at ascending. A bounded pool
of generic workers pulls from one queue; a tenant never has more than
per_tenant_concurrency jobs in PROCESSING.

The in-memory Job is authoritative while a job is active. Status changes
are decided synchronously (no await between check and update) so a cancel
and a worker finishing the same job cannot both win. The store only ever
receives the fields a transition changed.
"""

import asyncio
import bisect
import itertools
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Optional

from agenthub.agents.base_agent import BaseAgent
from agenthub.agents.registry import AgentRegistry
from agenthub.orchestrator.agent_cache import TenantAgentCache
from agenthub.orchestrator.broadcaster import EventBroadcaster
from agenthub.shared.config import SchedulerConfig
from agenthub.shared.constants import MAX_ERROR_DETAIL_LENGTH
from agenthub.shared.errors import (
    ConflictError, ForbiddenError, InvalidTransitionError, ItemProcessingError,
    JobNotFoundError, NoWorkError, RetryLimitError, StorageError,
)
from agenthub.shared.interfaces import IJobStore, ILeadStore
from agenthub.shared.models import (
    EventType, ItemResult, Job, JobKind, JobStatus, utc_now,
)

logger = logging.getLogger(__name__)

_COUNTER_FIELDS = (
    "items_processed", "items_succeeded", "processed_refs", "succeeded_refs", "item_errors",
)
_TERMINAL_FIELDS = ("status", "completed_at", "last_error", "item_errors")


def _truncate(message: str) -> str:
    if len(message) <= MAX_ERROR_DETAIL_LENGTH:
        return message
    return message[:MAX_ERROR_DETAIL_LENGTH - 3] + "..."


class CancellationToken:
    """Polled by the per-item loop between items, never mid-item."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


class JobScheduler:
    """Owns every active Job and the worker pool that executes them."""

    def __init__(
        self,
        store: IJobStore,
        agent_cache: TenantAgentCache,
        registry: AgentRegistry,
        broadcaster: EventBroadcaster,
        leads: ILeadStore,
        config: Optional[SchedulerConfig] = None,
    ):
        self._store = store
        self._cache = agent_cache
        self._registry = registry
        self._broadcaster = broadcaster
        self._leads = leads
        self._config = config or SchedulerConfig()

        self._jobs: dict[str, Job] = {}                      # active jobs only
        self._tokens: dict[str, CancellationToken] = {}
        self._reservations: dict[tuple[str, str], str] = {}  # (tenant, item_ref) -> job_id
        self._queue: list[tuple[int, float, int, str]] = []  # kept sorted
        self._seq = itertools.count()
        self._running: dict[str, int] = defaultdict(int)     # tenant -> processing jobs
        self._condition = asyncio.Condition()
        self._workers: list[asyncio.Task] = []
        self._creating: dict[str, asyncio.Future] = {}    # job_id -> settles once the create write ends
        self._retry_timers: dict[str, asyncio.Task] = {}  # job_id -> pending automatic retry

    # ── Lifecycle ───────────────────────────────────────────

    def start(self) -> None:
        if self._workers:
            return
        for worker_id in range(self._config.max_workers):
            task = asyncio.create_task(self._worker_loop(worker_id), name=f"job-worker-{worker_id}")
            self._workers.append(task)
        logger.info(
            f"Scheduler started: {self._config.max_workers} workers, "
            f"per-tenant concurrency {self._config.per_tenant_concurrency}"
        )

    async def stop(self) -> None:
        """Stop workers. Jobs left in PROCESSING are re-queued by the next recover()."""
        workers, self._workers = self._workers, []
        timers = list(self._retry_timers.values())
        self._retry_timers.clear()
        for task in workers + timers:
            task.cancel()
        if workers or timers:
            await asyncio.gather(*workers, *timers, return_exceptions=True)
        if timers:
            logger.info(f"Dropped {len(timers)} pending automatic retry(ies); the jobs stay FAILED")
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def recover(self) -> int:
        """
        Re-adopt queued/processing jobs left by a previous process.

        Adoption runs oldest first. A job whose pending items are already
        held by another active job is failed with a conflict detail rather
        than adopted, so no item ever has two active jobs.
        """
        active = await self._store.list_active_jobs()
        active.sort(key=lambda j: j.created_at)
        adopted = 0
        for job in active:
            if job.id in self._jobs:
                continue
            clashes = [
                ref for ref in job.pending_refs()
                if self._reservations.get((job.tenant_id, ref), job.id) != job.id
            ]
            if clashes:
                await self._reject_recovered(job, clashes)
                continue
            if job.status == JobStatus.PROCESSING:
                job.status = JobStatus.QUEUED
                job.started_at = None
                try:
                    await self._write(
                        lambda job=job: self._store.update_job(job.id, job.fields("status", "started_at")),
                        f"requeue of job {job.id}",
                    )
                except StorageError as e:
                    logger.error(f"Recovery skipped job {job.id}: {e}")
                    continue
            self._reserve(job)
            self._jobs[job.id] = job
            await self._enqueue(job)
            adopted += 1
        if adopted:
            logger.info(f"Recovered {adopted} active job(s) from the store")
        return adopted

    async def _reject_recovered(self, job: Job, clashes: list[str]) -> None:
        owner = self._reservations[(job.tenant_id, clashes[0])]
        job.status = JobStatus.FAILED
        job.completed_at = utc_now()
        job.last_error = _truncate(
            f"ConflictError: item(s) {clashes} already targeted by active job {owner}"
        )
        try:
            await self._write(
                lambda: self._store.update_job(job.id, job.fields(*_TERMINAL_FIELDS)),
                f"conflict failure of job {job.id}",
            )
        except StorageError as e:
            logger.error(f"Recovery skipped job {job.id}: {e}")
            return
        logger.warning(f"Recovered job {job.id} not adopted: {job.last_error}")
        await self._publish(job, EventType.FAILED, {"lastError": job.last_error})

    async def wait_until_idle(self) -> None:
        """Block until nothing is queued, processing or waiting on an automatic retry."""
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._queue and not any(self._running.values()) and not self._retry_timers
            )

    # ── Submission ──────────────────────────────────────────

    async def submit(
        self,
        tenant_id: str,
        agent_type: str,
        item_refs: list[str],
        priority: int = 0,
        job_kind: JobKind = JobKind.SINGLE,
        max_retries: Optional[int] = None,
    ) -> Job:
        """
        Validate, persist as QUEUED, enqueue, and return the Job.

        Raises NoWorkError, UnknownAgentError, ForbiddenError, ConflictError
        (carrying the existing job id) or StorageError. Execution itself is
        asynchronous; agent construction is deferred to the worker.
        """
        refs = list(dict.fromkeys(item_refs))
        if not refs:
            raise NoWorkError()
        self._registry.resolve(agent_type)
        if not await self._registry.check_entitlement(tenant_id, agent_type):
            raise ForbiddenError(tenant_id, agent_type)

        # Check and reserve with no await in between
        for ref in refs:
            existing = self._reservations.get((tenant_id, ref))
            if existing is not None:
                raise ConflictError(existing, ref)
        job = Job(
            tenant_id=tenant_id,
            agent_type=agent_type,
            item_refs=refs,
            job_kind=job_kind,
            priority=priority,
            max_retries=self._config.default_max_retries if max_retries is None else max_retries,
        )
        self._reserve(job)
        self._creating[job.id] = asyncio.get_running_loop().create_future()

        try:
            await self._write(lambda: self._store.create_job(job), f"create of job {job.id}")
        except (StorageError, asyncio.CancelledError):
            self._release(job)
            raise
        else:
            self._jobs[job.id] = job
            self._tokens[job.id] = CancellationToken()
        finally:
            self._creating.pop(job.id).set_result(job.id in self._jobs)

        logger.info(
            f"Job {job.id} queued: tenant={tenant_id} agent={agent_type} "
            f"items={job.items_total} priority={priority} kind={job_kind.value}"
        )
        await self._publish(job, EventType.QUEUED, {
            "agentType": agent_type,
            "jobKind": job_kind.value,
            "itemsTotal": job.items_total,
            "priority": priority,
        })
        await self._enqueue(job)
        return job

    async def existing_job(self, job_id: str, tenant_id: str) -> Job:
        """
        The job a ConflictError pointed at, once its create write has settled.
        Raises StorageError if that job was never created.
        """
        pending = self._creating.get(job_id)
        if pending is not None and not await asyncio.shield(pending):
            raise StorageError(f"Conflicting job {job_id} was never created")
        job = self._jobs.get(job_id)
        if job is not None and job.tenant_id == tenant_id:
            return job
        stored = await self._store.get_job(job_id, tenant_id)
        if stored is None:
            raise JobNotFoundError(job_id)
        return stored

    # ── Cancel / retry / purge ──────────────────────────────

    async def cancel(self, job_id: str, tenant_id: str) -> Job:
        job = await self._require_active(job_id, tenant_id, "cancelled")
        was_processing = job.status == JobStatus.PROCESSING
        token = self._tokens.setdefault(job.id, CancellationToken())
        token.cancel()
        job.status = JobStatus.CANCELLED
        job.completed_at = utc_now()
        if not was_processing:
            self._drop_from_queue(job.id)
            self._retire(job)
        # A processing job is retired by its worker once the current item returns
        logger.info(f"Job {job.id} cancelled (was {'processing' if was_processing else 'queued'})")
        if not was_processing:
            async with self._condition:
                self._condition.notify_all()

        try:
            await self._write(
                lambda: self._store.update_job(job.id, job.fields("status", "completed_at")),
                f"cancel of job {job.id}",
            )
        except StorageError as e:
            logger.error(f"Cancel of job {job.id} not persisted; recovery will reconcile: {e}")
            raise
        await self._publish(job, EventType.CANCELLED, {"itemsProcessed": job.items_processed})
        return job

    async def retry(self, job_id: str, tenant_id: str) -> Job:
        """
        FAILED -> QUEUED. Re-processes only items that have not yet succeeded;
        counters from earlier attempts are kept.
        """
        if job_id in self._jobs and self._jobs[job_id].tenant_id == tenant_id:
            raise InvalidTransitionError(f"Job {job_id} is still {self._jobs[job_id].status.value}")
        job = await self._store.get_job(job_id, tenant_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.FAILED:
            raise InvalidTransitionError(
                f"Job {job_id} is {job.status.value}; only failed jobs can be retried"
            )
        if job.retry_count >= job.max_retries:
            raise RetryLimitError(
                f"Job {job_id} has used {job.retry_count} of {job.max_retries} retries"
            )
        for ref in job.pending_refs():
            existing = self._reservations.get((tenant_id, ref))
            if existing is not None and existing != job.id:
                raise InvalidTransitionError(
                    f"Item {ref} of job {job_id} is now targeted by active job {existing}"
                )

        job.status = JobStatus.QUEUED
        job.retry_count += 1
        job.item_errors = {}
        job.last_error = None
        job.started_at = None
        job.completed_at = None
        self._reserve(job)
        self._jobs[job.id] = job
        self._tokens[job.id] = CancellationToken()

        try:
            await self._write(
                lambda: self._store.update_job(job.id, job.fields(
                    "status", "retry_count", "item_errors", "last_error", "started_at", "completed_at",
                )),
                f"retry of job {job.id}",
            )
        except (StorageError, asyncio.CancelledError):
            self._retire(job)
            raise

        logger.info(
            f"Job {job.id} retry {job.retry_count}/{job.max_retries}: "
            f"{len(job.pending_refs())} item(s) remaining"
        )
        await self._publish(job, EventType.QUEUED, {
            "agentType": job.agent_type,
            "jobKind": job.job_kind.value,
            "itemsTotal": job.items_total,
            "priority": job.priority,
            "retryCount": job.retry_count,
        })
        await self._enqueue(job)
        return job

    async def purge_terminal(self, tenant_id: str) -> int:
        purged = await self._write(
            lambda: self._store.purge_terminal_jobs(tenant_id), f"purge for tenant {tenant_id}",
        )
        logger.info(f"Purged {purged} terminal job(s) for tenant {tenant_id}")
        return purged

    async def _require_active(self, job_id: str, tenant_id: str, verb: str) -> Job:
        job = self._jobs.get(job_id)
        if job is not None and job.tenant_id == tenant_id:
            return job
        stored = await self._store.get_job(job_id, tenant_id)
        if stored is None:
            raise JobNotFoundError(job_id)
        raise InvalidTransitionError(
            f"Job {job_id} is {stored.status.value}; only queued or processing jobs can be {verb}"
        )

    # ── Queue ───────────────────────────────────────────────

    async def _enqueue(self, job: Job) -> None:
        entry = (-job.priority, job.created_at.timestamp(), next(self._seq), job.id)
        async with self._condition:
            bisect.insort(self._queue, entry)
            self._condition.notify_all()

    def _drop_from_queue(self, job_id: str) -> None:
        self._queue = [entry for entry in self._queue if entry[3] != job_id]

    def _take_next(self) -> Optional[Job]:
        """First queued job whose tenant is under its concurrency bound."""
        limit = self._config.per_tenant_concurrency
        for index, entry in enumerate(self._queue):
            job = self._jobs.get(entry[3])
            if job is None or job.status != JobStatus.QUEUED:
                continue
            if self._running[job.tenant_id] >= limit:
                continue
            del self._queue[index]
            self._running[job.tenant_id] += 1
            return job
        return None

    async def _worker_loop(self, worker_id: int) -> None:
        while True:
            async with self._condition:
                job = self._take_next()
                while job is None:
                    await self._condition.wait()
                    job = self._take_next()
            try:
                await self._execute(job)
            except Exception as e:
                logger.error(f"Worker {worker_id} crashed on job {job.id}: {e}", exc_info=True)
                if not job.status.is_terminal:
                    await self._fail(job, f"Internal error: {e}")
            finally:
                async with self._condition:
                    self._running[job.tenant_id] -= 1
                    if self._running[job.tenant_id] <= 0:
                        del self._running[job.tenant_id]
                    self._condition.notify_all()

    # ── Execution ───────────────────────────────────────────

    async def _execute(self, job: Job) -> None:
        if job.status != JobStatus.QUEUED:
            return
        token = self._tokens.setdefault(job.id, CancellationToken())
        job.status = JobStatus.PROCESSING
        job.started_at = utc_now()
        if not await self._persist(job, "status", "started_at"):
            return
        logger.info(f"Job {job.id} processing: {len(job.pending_refs())} item(s)")

        agent = await self._cache.get_or_create(job.tenant_id, job.agent_type)
        if token.is_cancelled:
            self._retire(job)
            return
        if agent is None:
            detail = self._cache.last_error(job.tenant_id, job.agent_type) or "agent unavailable"
            logger.error(f"Job {job.id} cannot construct agent {job.agent_type}: {detail}")
            # Construction failures wait for a manual retry
            await self._fail(job, f"AgentConstructionError: {detail}", retryable=False)
            return

        attempted = set(job.processed_refs)
        for ref in job.pending_refs():
            if token.is_cancelled:
                break
            result = await self._process_item(agent, job, ref)
            if ref not in attempted:
                attempted.add(ref)
                job.processed_refs.append(ref)
                job.items_processed += 1
            if result.success:
                job.succeeded_refs.append(ref)
                job.items_succeeded += 1
                job.item_errors.pop(ref, None)
            else:
                job.item_errors[ref] = _truncate(result.error or "unknown error")
                logger.warning(f"Job {job.id} item {ref} failed: {result.error}")
            if not await self._persist(job, *_COUNTER_FIELDS):
                return
            if token.is_cancelled:
                # cancel() landed mid-item and has already announced the job
                break
            await self._publish(job, EventType.PROGRESS, {
                "itemsProcessed": job.items_processed,
                "itemsTotal": job.items_total,
                "itemsSucceeded": job.items_succeeded,
            })

        if token.is_cancelled:
            # cancel() already moved the job to CANCELLED and persisted it
            self._retire(job)
            return

        if job.items_succeeded > 0 or job.items_total == 0:
            await self._complete(job)
        else:
            await self._fail(job, f"All {len(job.item_errors)} item(s) failed")

    async def _process_item(self, agent: BaseAgent, job: Job, ref: str) -> ItemResult:
        """One unit of work. Every failure becomes a failed ItemResult."""
        try:
            lead = await self._leads.get_lead(job.tenant_id, ref)
        except Exception as e:
            return ItemResult(item_ref=ref, success=False, error=f"lead lookup failed: {e}")
        if lead is None:
            return ItemResult(item_ref=ref, success=False, error="lead not found")

        timeout = self._config.item_timeout_seconds
        try:
            result = await asyncio.wait_for(agent.process_item(lead), timeout=timeout)
        except asyncio.TimeoutError:
            return ItemResult(item_ref=ref, success=False, error=f"timed out after {timeout}s")
        except ItemProcessingError as e:
            return ItemResult(item_ref=ref, success=False, error=str(e))
        except Exception as e:
            return ItemResult(item_ref=ref, success=False, error=f"{type(e).__name__}: {e}")

        if not result.success:
            return result
        try:
            await self._leads.save_result(job.tenant_id, ref, job.agent_type, result.output)
        except Exception as e:
            return ItemResult(item_ref=ref, success=False, error=f"result write failed: {e}")
        return result

    async def _complete(self, job: Job) -> None:
        job.status = JobStatus.COMPLETED
        job.completed_at = utc_now()
        job.last_error = None
        self._retire(job)
        if not await self._persist(job, *_TERMINAL_FIELDS):
            return
        logger.info(f"Job {job.id} completed: {job.items_succeeded}/{job.items_total} succeeded")
        await self._publish(job, EventType.COMPLETED, {
            "itemsSucceeded": job.items_succeeded,
            "itemsProcessed": job.items_processed,
            "itemsTotal": job.items_total,
        })

    async def _fail(self, job: Job, error: str, retryable: bool = True) -> None:
        job.status = JobStatus.FAILED
        job.completed_at = utc_now()
        job.last_error = _truncate(error)
        self._retire(job)
        if not await self._persist(job, *_TERMINAL_FIELDS):
            return
        logger.warning(f"Job {job.id} failed: {job.last_error}")
        await self._publish(job, EventType.FAILED, {"lastError": job.last_error})
        if retryable:
            self._schedule_retry(job)

    def _schedule_retry(self, job: Job) -> None:
        """Requeue a FAILED job through retry() after base * 2**retry_count seconds."""
        if not self._config.auto_retry or job.retry_count >= job.max_retries:
            return
        if job.id in self._retry_timers:
            return
        delay = self._config.retry_backoff_base_seconds * (2 ** job.retry_count)
        logger.info(
            f"Job {job.id} will retry automatically in {delay}s "
            f"({job.retry_count + 1}/{job.max_retries})"
        )
        self._retry_timers[job.id] = asyncio.create_task(
            self._retry_after(job.id, job.tenant_id, delay), name=f"job-retry-{job.id}",
        )

    async def _retry_after(self, job_id: str, tenant_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.retry(job_id, tenant_id)
        except (InvalidTransitionError, JobNotFoundError, RetryLimitError, StorageError) as e:
            # A manual retry, cancel or purge got there first
            logger.warning(f"Automatic retry of job {job_id} skipped: {e}")
        finally:
            self._retry_timers.pop(job_id, None)
            async with self._condition:
                self._condition.notify_all()

    async def _persist(self, job: Job, *names: str) -> bool:
        """
        Write a transition. On exhausted retries the job is failed with a
        storage error; if that write also fails the store keeps its last
        good state for recovery. Returns False when execution must stop.
        """
        try:
            await self._write(
                lambda: self._store.update_job(job.id, job.fields(*names)), f"update of job {job.id}",
            )
            return True
        except StorageError as e:
            logger.error(f"Job {job.id} aborted: {e}")
            error = _truncate(f"StorageError: {e}")
        self._retire(job)
        if job.status == JobStatus.CANCELLED:
            return False
        job.status = JobStatus.FAILED
        job.completed_at = utc_now()
        job.last_error = error
        try:
            await self._write(
                lambda: self._store.update_job(job.id, job.fields(*_TERMINAL_FIELDS)),
                f"failure write of job {job.id}",
            )
        except StorageError as e:
            logger.error(f"Job {job.id} left in last persisted state for recovery: {e}")
            return False
        await self._publish(job, EventType.FAILED, {"lastError": error})
        self._schedule_retry(job)
        return False

    async def _write(self, operation: Callable[[], Awaitable], description: str):
        """Bounded retry with exponential backoff around one store write."""
        attempts = max(1, self._config.store_write_attempts)
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as e:
                last_error = e
                if attempt < attempts - 1:
                    delay = self._config.store_backoff_base_seconds * (2 ** attempt)
                    logger.warning(
                        f"Store {description} failed (attempt {attempt + 1}/{attempts}): {e}. "
                        f"Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
        raise StorageError(f"{description} failed after {attempts} attempts: {last_error}") from last_error

    # ── Bookkeeping ─────────────────────────────────────────

    def _reserve(self, job: Job) -> None:
        for ref in job.pending_refs():
            self._reservations[(job.tenant_id, ref)] = job.id

    def _release(self, job: Job) -> None:
        for ref in job.item_refs:
            key = (job.tenant_id, ref)
            if self._reservations.get(key) == job.id:
                del self._reservations[key]

    def _retire(self, job: Job) -> None:
        """Job left the active set: free its item targets."""
        self._release(job)
        self._jobs.pop(job.id, None)
        self._tokens.pop(job.id, None)

    async def _publish(self, job: Job, event_type: EventType, data: dict) -> None:
        await self._broadcaster.publish(job.tenant_id, event_type, {"jobId": job.id, **data})

    def active_job_for(self, tenant_id: str, item_ref: str) -> Optional[str]:
        return self._reservations.get((tenant_id, item_ref))

    def get_status(self) -> dict:
        return {
            "workers": len(self._workers),
            "running": self.is_running,
            "queued": len(self._queue),
            "processing": sum(self._running.values()),
            "active_jobs": len(self._jobs),
            "per_tenant_concurrency": self._config.per_tenant_concurrency,
        }
