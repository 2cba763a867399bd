"""
Seed loader: populates subscriptions, credentials and leads from a JSON file.

Format:
    {
      "tenants": [
        {
          "id": "tenant-1",
          "plan": "professional",
          "status": "active",
          "credentials": {
            "falcon": {"secrets": {"anthropic_api_key": "..."}, "enabled": true, "configuration": {}}
          },
          "leads": [{"id": "lead-1", "full_name": "...", "company": "..."}]
        }
      ]
    }
"""

import json
import logging

from agenthub.persistence.lead_store import InMemoryLeadStore
from agenthub.shared.entitlements import PlanEntitlements
from agenthub.shared.models import Lead
from agenthub.shared.vault import LocalCredentialVault

logger = logging.getLogger(__name__)


async def load_seed_file(
    path: str,
    vault: LocalCredentialVault,
    entitlements: PlanEntitlements,
    leads: InMemoryLeadStore,
) -> dict:
    """Load the fixture. Raises on unreadable or malformed input."""
    with open(path, "r") as f:
        data = json.load(f)

    counts = {"tenants": 0, "credentials": 0, "leads": 0}
    for tenant in data.get("tenants", []):
        tenant_id = tenant["id"]
        if tenant.get("plan"):
            entitlements.set_subscription(tenant_id, tenant["plan"], tenant.get("status", "active"))

        for agent_type, bundle in tenant.get("credentials", {}).items():
            vault.put_credential_bundle(
                tenant_id,
                agent_type,
                secrets=bundle.get("secrets", {}),
                enabled=bundle.get("enabled", True),
                configuration=bundle.get("configuration", {}),
            )
            counts["credentials"] += 1

        for raw in tenant.get("leads", []):
            await leads.add_lead(Lead.from_dict({**raw, "tenant_id": tenant_id}))
            counts["leads"] += 1
        counts["tenants"] += 1

    logger.info(
        f"Seed loaded from {path}: {counts['tenants']} tenant(s), "
        f"{counts['credentials']} credential bundle(s), {counts['leads']} lead(s)"
    )
    return counts
