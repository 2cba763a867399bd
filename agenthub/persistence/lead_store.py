"""
In-memory lead store: the item set agents work on.
"""

import asyncio
import logging
from typing import Optional

from agenthub.shared.interfaces import ILeadStore
from agenthub.shared.models import Lead

logger = logging.getLogger(__name__)


class InMemoryLeadStore(ILeadStore):
    """Leads partitioned by tenant, kept in insertion order."""

    def __init__(self):
        self._leads: dict[str, dict[str, Lead]] = {}
        self._lock = asyncio.Lock()

    async def add_lead(self, lead: Lead) -> Lead:
        async with self._lock:
            self._leads.setdefault(lead.tenant_id, {})[lead.id] = lead
        return lead

    async def list_leads(self, tenant_id: str) -> list[Lead]:
        async with self._lock:
            return list(self._leads.get(tenant_id, {}).values())

    async def get_lead(self, tenant_id: str, lead_id: str) -> Optional[Lead]:
        async with self._lock:
            return self._leads.get(tenant_id, {}).get(lead_id)

    async def save_result(self, tenant_id: str, lead_id: str, agent_type: str, output: dict) -> None:
        async with self._lock:
            lead = self._leads.get(tenant_id, {}).get(lead_id)
            if lead is None:
                raise KeyError(f"Lead {lead_id} not found for tenant {tenant_id}")
            lead.results[agent_type] = output
            # Qualification output carries a rating; it marks the lead as qualified
            if output.get("rating"):
                lead.qualification_rating = output["rating"]
                lead.qualification_score = output.get("score")
        logger.debug(f"Saved {agent_type} result for lead {lead_id} of tenant {tenant_id}")
