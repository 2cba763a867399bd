"""
Bulk Fan-out Planner - expands a bulk selection into ordered item refs.

A pure query over the tenant's lead set: it creates nothing and changes
nothing. An empty plan is the caller's signal to raise NoWorkError.
"""

import logging

from agenthub.shared.interfaces import ILeadStore
from agenthub.shared.models import BulkSelection, SelectionMode

logger = logging.getLogger(__name__)


class BulkFanoutPlanner:
    """Resolves explicit, filter and all-unqualified selections."""

    def __init__(self, leads: ILeadStore):
        self._leads = leads

    async def plan(self, tenant_id: str, selection: BulkSelection) -> list[str]:
        if selection.mode == SelectionMode.EXPLICIT:
            refs = await self._plan_explicit(tenant_id, selection)
        elif selection.mode == SelectionMode.FILTER:
            refs = await self._plan_filter(tenant_id, selection)
        else:
            refs = await self._plan_all_unqualified(tenant_id, selection)
        logger.info(f"Planned {len(refs)} item(s) for tenant {tenant_id} (mode={selection.mode.value})")
        return refs

    async def _plan_explicit(self, tenant_id: str, selection: BulkSelection) -> list[str]:
        # Deduplicate, keep the caller's order, and drop ids the tenant does not own
        owned = {lead.id for lead in await self._leads.list_leads(tenant_id)}
        requested = list(dict.fromkeys(selection.lead_ids))
        refs = [ref for ref in requested if ref in owned]
        if len(refs) < len(requested):
            logger.warning(
                f"Ignored {len(requested) - len(refs)} unknown lead id(s) for tenant {tenant_id}"
            )
        return refs

    async def _plan_filter(self, tenant_id: str, selection: BulkSelection) -> list[str]:
        leads = await self._leads.list_leads(tenant_id)
        return [lead.id for lead in leads if selection.filters.matches(lead)]

    async def _plan_all_unqualified(self, tenant_id: str, selection: BulkSelection) -> list[str]:
        leads = await self._leads.list_leads(tenant_id)
        if selection.include_already_processed:
            return [lead.id for lead in leads]
        return [lead.id for lead in leads if not lead.is_qualified]
