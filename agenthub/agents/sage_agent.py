"""
Sage Agent - company research / enrichment.

Looks the lead's company up in the tenant's enrichment provider and
returns the firmographic fields it finds.
"""

import logging
from typing import Optional

import aiohttp

from agenthub.agents.base_agent import BaseAgent
from agenthub.shared.config import EnrichmentConfig
from agenthub.shared.errors import ItemProcessingError
from agenthub.shared.models import AgentType, ItemResult, Lead, TenantCredentialBundle

logger = logging.getLogger(__name__)

ENRICHMENT_FIELDS = ("name", "domain", "industry", "employee_count", "revenue_range", "headquarters")


class SageAgent(BaseAgent):
    """Enriches leads through an HTTP enrichment API using the tenant's key."""

    agent_type = AgentType.SAGE.value
    required_secrets = ("enrichment_api_key",)

    def __init__(
        self,
        tenant_id: str,
        bundle: TenantCredentialBundle,
        config: Optional[EnrichmentConfig] = None,
    ):
        super().__init__(tenant_id, bundle)
        config = config or EnrichmentConfig()
        self._base_url = bundle.configuration.get("enrichment_url", config.base_url).rstrip("/")
        self._timeout = config.timeout_seconds
        self._api_key = bundle.get_secret("enrichment_api_key")

    async def process_item(self, lead: Lead) -> ItemResult:
        self._check_tenant(lead)
        params = {"domain": lead.company_domain} if lead.company_domain else {"name": lead.company}
        if not any(params.values()):
            raise ItemProcessingError(f"Lead {lead.id} has no company to research")

        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self._base_url}/companies",
                    params=params,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    if resp.status == 404:
                        raise ItemProcessingError(f"No enrichment data for {params}")
                    if resp.status != 200:
                        raise ItemProcessingError(f"Enrichment API returned HTTP {resp.status}")
                    body = await resp.json()
        except aiohttp.ClientError as e:
            logger.warning(f"Enrichment request failed for lead {lead.id}: {e}")
            raise ItemProcessingError(f"Enrichment request failed: {e}") from e

        company = body.get("company", body) if isinstance(body, dict) else {}
        output = {key: company[key] for key in ENRICHMENT_FIELDS if key in company}
        return ItemResult(item_ref=lead.id, success=True, output={"company": output})
