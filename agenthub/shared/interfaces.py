"""
Abstract interfaces (Ports) for AgentHub.
Following Dependency Inversion Principle - depend on abstractions, not concretions.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .models import Job, Lead, TenantCredentialBundle


class IJobStore(ABC):
    """Durable persistence of job records.

    Each write either fully succeeds or fully fails; callers retry.
    """

    @abstractmethod
    async def create_job(self, job: Job) -> str:
        """Persist a new job row and return its id."""

    @abstractmethod
    async def update_job(self, job_id: str, fields: dict) -> None:
        """Apply a partial update. Raises if the row is missing or the write fails."""

    @abstractmethod
    async def get_job(self, job_id: str, tenant_id: str) -> Optional[Job]:
        """Fetch a job scoped to its tenant. None when absent or foreign."""

    @abstractmethod
    async def list_recent_jobs(self, tenant_id: str, limit: int) -> list[Job]:
        """Newest first."""

    @abstractmethod
    async def list_active_jobs(self) -> list[Job]:
        """All queued/processing jobs across tenants, for crash recovery."""

    @abstractmethod
    async def purge_terminal_jobs(self, tenant_id: str) -> int:
        """Delete the tenant's completed/failed/cancelled jobs. Returns count."""


class ICredentialVault(ABC):
    """Tenant-scoped credential bundles."""

    @abstractmethod
    async def get_credential_bundle(
        self, tenant_id: str, agent_type: str
    ) -> Optional[TenantCredentialBundle]:
        """Return the decrypted bundle, or None when the tenant has none."""


class IEntitlementSource(ABC):
    """Subscription / plan-feature lookup."""

    @abstractmethod
    async def plan_includes_agent(self, tenant_id: str, agent_type: str) -> bool:
        """True when the tenant's active plan includes the agent."""


class ILeadStore(ABC):
    """The tenant's item set."""

    @abstractmethod
    async def list_leads(self, tenant_id: str) -> list[Lead]:
        """All of the tenant's leads in the store's natural order."""

    @abstractmethod
    async def get_lead(self, tenant_id: str, lead_id: str) -> Optional[Lead]:
        """One lead, scoped to its tenant."""

    @abstractmethod
    async def save_result(
        self, tenant_id: str, lead_id: str, agent_type: str, output: dict
    ) -> None:
        """Record an agent's output against the lead."""


class IConnection(ABC):
    """A live push connection. Starlette's WebSocket satisfies this by duck typing."""

    @abstractmethod
    async def send_json(self, data: Any) -> None:
        """Deliver one JSON message."""
