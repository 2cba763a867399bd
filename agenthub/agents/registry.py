"""
Agent Registry - typed lookup table from agent type to constructor.

Construction is gated by the tenant's plan entitlement. The check fails
closed: a lookup error counts as "not entitled", and no agent is built
unless the check returned True.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from agenthub.agents.base_agent import BaseAgent
from agenthub.agents.falcon_agent import FalconAgent
from agenthub.agents.sage_agent import SageAgent
from agenthub.agents.sentinel_agent import SentinelAgent
from agenthub.shared.config import AppConfig
from agenthub.shared.errors import ForbiddenError, UnknownAgentError
from agenthub.shared.interfaces import IEntitlementSource
from agenthub.shared.models import AgentType, TenantCredentialBundle

logger = logging.getLogger(__name__)

AgentConstructor = Callable[[str, TenantCredentialBundle], BaseAgent]


@dataclass
class AgentDefinition:
    """A registered agent type and how to build it."""
    agent_type: str
    constructor: AgentConstructor
    description: str = ""


class AgentRegistry:
    """
    Central registry of constructible agents.

    Unregistered agent types never resolve; callers get UnknownAgentError.
    """

    def __init__(self, entitlements: IEntitlementSource):
        self._entitlements = entitlements
        self._agents: dict[str, AgentDefinition] = {}

    def register(self, agent_type: str, constructor: AgentConstructor, description: str = "") -> None:
        self._agents[agent_type] = AgentDefinition(
            agent_type=agent_type,
            constructor=constructor,
            description=description,
        )
        logger.info(f"Registered agent type: {agent_type}")

    def resolve(self, agent_type: str) -> AgentConstructor:
        definition = self._agents.get(agent_type)
        if not definition:
            raise UnknownAgentError(agent_type)
        return definition.constructor

    def is_registered(self, agent_type: str) -> bool:
        return agent_type in self._agents

    def get_all_agents(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    async def check_entitlement(self, tenant_id: str, agent_type: str) -> bool:
        """True only on an explicit yes from the entitlement source."""
        try:
            allowed = await self._entitlements.plan_includes_agent(tenant_id, agent_type)
        except Exception as e:
            logger.error(f"Entitlement lookup failed for tenant {tenant_id}, agent {agent_type}: {e}")
            return False
        if allowed is not True:
            logger.warning(f"BLOCKED: tenant {tenant_id} not entitled to agent '{agent_type}'")
            return False
        return True

    async def construct(self, tenant_id: str, agent_type: str, bundle: TenantCredentialBundle) -> BaseAgent:
        """Build an agent after resolving its type and verifying entitlement."""
        constructor = self.resolve(agent_type)
        if not await self.check_entitlement(tenant_id, agent_type):
            raise ForbiddenError(tenant_id, agent_type)
        return constructor(tenant_id, bundle)


def create_default_registry(
    entitlements: IEntitlementSource,
    config: Optional[AppConfig] = None,
) -> AgentRegistry:
    """
    Factory: the standard registry with all three agent types.

      - falcon: lead qualification (needs anthropic_api_key)
      - sage: company enrichment (needs enrichment_api_key)
      - sentinel: reply triage (needs anthropic_api_key)
    """
    config = config or AppConfig()
    registry = AgentRegistry(entitlements)
    registry.register(
        AgentType.FALCON.value,
        partial(FalconAgent, config=config.anthropic),
        description="Lead qualification scoring",
    )
    registry.register(
        AgentType.SAGE.value,
        partial(SageAgent, config=config.enrichment),
        description="Company research and enrichment",
    )
    registry.register(
        AgentType.SENTINEL.value,
        partial(SentinelAgent, config=config.anthropic),
        description="Inbound reply triage",
    )
    return registry
