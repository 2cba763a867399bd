"""
Base Agent - Abstract base class for all agents.

Each agent instance:
1. Is bound at construction to exactly one (tenant, agent type, credential bundle)
2. Validates that its required credential keys are present, else refuses to build
3. Processes one lead at a time through process_item()
4. Releases its network clients in aclose() when its cache entry is evicted
"""

import logging
from abc import ABC, abstractmethod

from agenthub.shared.constants import MAX_LEAD_FIELD_IN_PROMPT
from agenthub.shared.errors import AgentConstructionError
from agenthub.shared.models import ItemResult, Lead, TenantCredentialBundle

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """Abstract base class for all tenant agents."""

    agent_type: str = ""
    required_secrets: tuple = ()

    def __init__(self, tenant_id: str, bundle: TenantCredentialBundle):
        if bundle.tenant_id != tenant_id:
            raise AgentConstructionError(
                f"Credential bundle for tenant {bundle.tenant_id} cannot build an agent "
                f"for tenant {tenant_id}"
            )
        missing = [name for name in self.required_secrets if not bundle.get_secret(name)]
        if missing:
            raise AgentConstructionError(
                f"Missing credentials for {self.agent_type}: {', '.join(missing)}"
            )
        self._tenant_id = tenant_id
        self._bundle = bundle
        logger.info(f"Agent constructed: {self.agent_type} for tenant {tenant_id}")

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def configuration(self) -> dict:
        return self._bundle.configuration

    @abstractmethod
    async def process_item(self, lead: Lead) -> ItemResult:
        """Do one unit of work. Raise ItemProcessingError (or anything) on failure."""

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""

    def _check_tenant(self, lead: Lead) -> None:
        # Agents never touch another tenant's data
        if lead.tenant_id != self._tenant_id:
            raise PermissionError(
                f"Agent for tenant {self._tenant_id} refused lead of tenant {lead.tenant_id}"
            )

    @staticmethod
    def _describe_lead(lead: Lead) -> str:
        """Render the lead fields an LLM prompt needs."""
        fields = {
            "Name": lead.full_name,
            "Company": lead.company,
            "Company domain": lead.company_domain,
            "Industry": lead.industry,
            "Location": lead.location,
            "Status": lead.lead_status,
        }
        return "\n".join(
            f"{label}: {value[:MAX_LEAD_FIELD_IN_PROMPT]}"
            for label, value in fields.items() if value
        )
