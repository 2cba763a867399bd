"""
Tenant agents for AgentHub.

Each agent instance has:
- Exactly one owning tenant and that tenant's credential bundle
- A single capability: process_item(lead) -> ItemResult
- Construction gated by plan entitlement via the Agent Registry
"""
