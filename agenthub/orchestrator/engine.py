"""
Orchestrator engine - the submitted-work boundary.

Wires the Agent Registry, Tenant Agent Cache, Bulk Fan-out Planner,
Job Scheduler and Event Broadcaster together, and resolves scheduler
conflicts into idempotent results for callers.
"""

import logging
from typing import Optional

from agenthub.agents.registry import AgentRegistry, create_default_registry
from agenthub.orchestrator.agent_cache import TenantAgentCache
from agenthub.orchestrator.broadcaster import EventBroadcaster
from agenthub.orchestrator.planner import BulkFanoutPlanner
from agenthub.orchestrator.scheduler import JobScheduler
from agenthub.shared.config import AppConfig
from agenthub.shared.constants import (
    AUTO_QUALIFY_PRIORITY, DEFAULT_RECENT_JOBS_LIMIT,
    DEFAULT_SINGLE_PRIORITY, MAX_RECENT_JOBS_LIMIT,
)
from agenthub.shared.errors import ConflictError, JobNotFoundError, NoWorkError
from agenthub.shared.interfaces import (
    ICredentialVault, IEntitlementSource, IJobStore, ILeadStore,
)
from agenthub.shared.models import (
    AgentType, BulkSelection, Job, JobKind, SubmitResult,
)
from agenthub.shared.vault import LocalCredentialVault

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """
    Facade over the job engine.

    Submission errors (NoWork, Forbidden, UnknownAgent, Storage) are raised
    to the caller. Execution outcomes are only observable through events
    and subsequent reads.
    """

    def __init__(
        self,
        config: AppConfig,
        store: IJobStore,
        vault: ICredentialVault,
        entitlements: IEntitlementSource,
        leads: ILeadStore,
        registry: Optional[AgentRegistry] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ):
        self._config = config
        self._store = store
        self._leads = leads
        self._registry = registry or create_default_registry(entitlements, config)
        self._broadcaster = broadcaster or EventBroadcaster(config.broadcast.send_timeout_seconds)
        self._cache = TenantAgentCache(self._registry, vault)
        self._planner = BulkFanoutPlanner(leads)
        self._scheduler = JobScheduler(
            store=store,
            agent_cache=self._cache,
            registry=self._registry,
            broadcaster=self._broadcaster,
            leads=leads,
            config=config.scheduler,
        )
        if isinstance(vault, LocalCredentialVault):
            vault.add_change_listener(self._on_credentials_changed)

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    @property
    def scheduler(self) -> JobScheduler:
        return self._scheduler

    @property
    def agent_cache(self) -> TenantAgentCache:
        return self._cache

    # ── Lifecycle ───────────────────────────────────────────

    async def start(self) -> None:
        """Recover in-flight jobs from the store, then start the workers."""
        recovered = await self._scheduler.recover()
        self._scheduler.start()
        logger.info(f"Job orchestrator started ({recovered} job(s) recovered)")

    async def stop(self) -> None:
        await self._scheduler.stop()
        await self._cache.close()
        logger.info("Job orchestrator stopped")

    # ── Submission ──────────────────────────────────────────

    async def submit_single(
        self,
        tenant_id: str,
        agent_type: str,
        lead_id: str,
        priority: int = DEFAULT_SINGLE_PRIORITY,
    ) -> SubmitResult:
        lead = await self._leads.get_lead(tenant_id, lead_id)
        if lead is None:
            raise NoWorkError(f"Lead {lead_id} not found")
        return await self._submit(tenant_id, agent_type, [lead_id], priority, JobKind.SINGLE)

    async def submit_bulk(
        self,
        tenant_id: str,
        agent_type: str,
        selection: BulkSelection,
    ) -> SubmitResult:
        refs = await self._planner.plan(tenant_id, selection)
        if not refs:
            raise NoWorkError()
        return await self._submit(tenant_id, agent_type, refs, selection.priority, JobKind.BULK_CHILD)

    async def submit_auto(self, tenant_id: str, lead_id: str) -> Optional[SubmitResult]:
        """
        Auto-qualification of a newly created lead. Returns None when the
        lead is already qualified.
        """
        lead = await self._leads.get_lead(tenant_id, lead_id)
        if lead is None:
            raise NoWorkError(f"Lead {lead_id} not found")
        if lead.is_qualified:
            logger.info(f"Auto-qualify skipped: lead {lead_id} of tenant {tenant_id} already qualified")
            return None
        return await self._submit(
            tenant_id, AgentType.FALCON.value, [lead_id], AUTO_QUALIFY_PRIORITY, JobKind.AUTO,
        )

    async def _submit(
        self,
        tenant_id: str,
        agent_type: str,
        refs: list[str],
        priority: int,
        job_kind: JobKind,
    ) -> SubmitResult:
        try:
            job = await self._scheduler.submit(
                tenant_id, agent_type, refs, priority=priority, job_kind=job_kind,
            )
        except ConflictError as e:
            # Overlapping submission: the caller gets the job already doing the work,
            # or that job's StorageError if its create write never lands
            existing = await self._scheduler.existing_job(e.existing_job_id, tenant_id)
            logger.info(
                f"Submission for tenant {tenant_id} deduplicated onto job {existing.id} "
                f"(item {e.item_ref} already targeted)"
            )
            return SubmitResult(
                job_id=existing.id,
                items_total=existing.items_total,
                deduplicated=True,
            )
        return SubmitResult(job_id=job.id, items_total=job.items_total)

    # ── Job control ─────────────────────────────────────────

    async def cancel(self, job_id: str, tenant_id: str) -> Job:
        return await self._scheduler.cancel(job_id, tenant_id)

    async def retry(self, job_id: str, tenant_id: str) -> Job:
        return await self._scheduler.retry(job_id, tenant_id)

    async def purge_terminal(self, tenant_id: str) -> int:
        return await self._scheduler.purge_terminal(tenant_id)

    async def get_job(self, job_id: str, tenant_id: str) -> Job:
        job = await self._store.get_job(job_id, tenant_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_recent_jobs(self, tenant_id: str, limit: int = DEFAULT_RECENT_JOBS_LIMIT) -> list[Job]:
        limit = max(1, min(limit, MAX_RECENT_JOBS_LIMIT))
        return await self._store.list_recent_jobs(tenant_id, limit)

    # ── Credentials ─────────────────────────────────────────

    def invalidate_tenant(self, tenant_id: str) -> int:
        return self._cache.invalidate(tenant_id)

    def _on_credentials_changed(self, tenant_id: str, agent_type: str) -> None:
        dropped = self._cache.invalidate(tenant_id)
        logger.info(
            f"Credentials changed for tenant {tenant_id} ({agent_type}); "
            f"{dropped} cached agent(s) dropped"
        )

    async def get_status(self) -> dict:
        return {
            "scheduler": self._scheduler.get_status(),
            "cached_agents": self._cache.size(),
            "connections": self._broadcaster.connection_count(),
            "agent_types": [d.agent_type for d in self._registry.get_all_agents()],
            "environment": self._config.environment,
        }
