"""
Plan entitlements - which agents a tenant's subscription includes.

A tenant is entitled to an agent only when its subscription is active
and its plan lists the agent. Anything unknown is treated as "no".
"""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Optional

from .interfaces import IEntitlementSource
from .models import AgentType

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION = "active"

DEFAULT_PLAN_AGENTS: dict[str, frozenset] = {
    "starter": frozenset({AgentType.FALCON.value}),
    "professional": frozenset({AgentType.FALCON.value, AgentType.SAGE.value}),
    "ultra": frozenset({
        AgentType.FALCON.value, AgentType.SAGE.value, AgentType.SENTINEL.value,
    }),
}


@dataclass(frozen=True)
class TenantSubscription:
    """A tenant's plan assignment."""
    plan: str
    status: str = ACTIVE_SUBSCRIPTION


class PlanEntitlements(IEntitlementSource):
    """In-memory plan table plus per-tenant subscriptions. Thread-safe."""

    def __init__(self, plan_agents: Optional[dict[str, frozenset]] = None):
        self._plan_agents = dict(plan_agents or DEFAULT_PLAN_AGENTS)
        self._subscriptions: dict[str, TenantSubscription] = {}
        self._lock = Lock()

    def set_subscription(self, tenant_id: str, plan: str, status: str = ACTIVE_SUBSCRIPTION) -> None:
        with self._lock:
            self._subscriptions[tenant_id] = TenantSubscription(plan=plan, status=status)
        logger.info(f"Subscription for tenant {tenant_id}: plan={plan}, status={status}")

    def get_subscription(self, tenant_id: str) -> Optional[TenantSubscription]:
        with self._lock:
            return self._subscriptions.get(tenant_id)

    async def plan_includes_agent(self, tenant_id: str, agent_type: str) -> bool:
        subscription = self.get_subscription(tenant_id)
        if not subscription or subscription.status != ACTIVE_SUBSCRIPTION:
            return False
        return agent_type in self._plan_agents.get(subscription.plan, frozenset())
