"""
Tenant Agent Cache - per-tenant, per-agent-type memoized agent instances.

Lookup is two-level (tenant, then agent type). Concurrent misses for the
same key collapse onto one construction; misses for different tenants
never wait on each other. The only eviction path is invalidate(tenant),
called when a tenant's credentials change. There is no TTL: a cached
agent keeps the credentials it was built with until invalidated.
"""

import asyncio
import logging
from collections import defaultdict
from threading import Lock
from typing import Optional

from agenthub.agents.base_agent import BaseAgent
from agenthub.agents.registry import AgentRegistry
from agenthub.shared.errors import AgentHubError
from agenthub.shared.interfaces import ICredentialVault

logger = logging.getLogger(__name__)

# A rebuild is attempted when credentials rotate mid-construction
MAX_BUILD_ATTEMPTS = 2


class TenantAgentCache:
    """Owns every AgentInstance. Never shares one across tenants."""

    def __init__(self, registry: AgentRegistry, vault: ICredentialVault):
        self._registry = registry
        self._vault = vault
        self._instances: dict[str, dict[str, BaseAgent]] = {}
        self._inflight: dict[tuple[str, str], asyncio.Future] = {}
        self._generations: dict[str, int] = defaultdict(int)
        self._last_errors: dict[tuple[str, str], str] = {}
        self._close_tasks: set[asyncio.Task] = set()
        self._lock = Lock()

    async def get_or_create(self, tenant_id: str, agent_type: str) -> Optional[BaseAgent]:
        """
        Return the tenant's agent, building it on first use.

        Returns None (never raises) when credentials are missing, disabled,
        unreadable, or construction is refused. None is not cached.
        """
        key = (tenant_id, agent_type)
        with self._lock:
            agent = self._instances.get(tenant_id, {}).get(agent_type)
            if agent is not None:
                return agent
            future = self._inflight.get(key)
            is_owner = future is None
            if is_owner:
                future = asyncio.get_running_loop().create_future()
                self._inflight[key] = future

        if not is_owner:
            # shield: one waiter being cancelled must not cancel the shared build
            return await asyncio.shield(future)

        agent = None
        try:
            agent = await self._build_current(tenant_id, agent_type)
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            if not future.done():
                future.set_result(agent)
        return agent

    async def _build_current(self, tenant_id: str, agent_type: str) -> Optional[BaseAgent]:
        key = (tenant_id, agent_type)
        for _ in range(MAX_BUILD_ATTEMPTS):
            with self._lock:
                generation = self._generations[tenant_id]
            agent = await self._build(tenant_id, agent_type)
            if agent is None:
                return None
            with self._lock:
                if self._generations[tenant_id] == generation:
                    self._instances.setdefault(tenant_id, {})[agent_type] = agent
                    self._last_errors.pop(key, None)
                    return agent
            logger.info(f"Credentials for tenant {tenant_id} changed during construction of {agent_type}; rebuilding")
            await self._close_agents([agent])
        self._record_error(key, "credentials changed repeatedly during construction")
        return None

    async def _build(self, tenant_id: str, agent_type: str) -> Optional[BaseAgent]:
        key = (tenant_id, agent_type)
        try:
            bundle = await self._vault.get_credential_bundle(tenant_id, agent_type)
        except Exception as e:
            logger.error(f"Credential load failed for tenant {tenant_id}, agent {agent_type}: {e}")
            self._record_error(key, f"credential load failed: {e}")
            return None

        if bundle is None:
            self._record_error(key, f"no credentials configured for agent '{agent_type}'")
            logger.warning(f"No credentials for tenant {tenant_id}, agent {agent_type}")
            return None
        if not bundle.enabled:
            self._record_error(key, f"agent '{agent_type}' is disabled for this tenant")
            logger.info(f"Agent {agent_type} disabled for tenant {tenant_id}")
            return None

        try:
            return await self._registry.construct(tenant_id, agent_type, bundle)
        except AgentHubError as e:
            logger.error(f"Agent construction refused for tenant {tenant_id}, agent {agent_type}: {e}")
            self._record_error(key, str(e))
        except Exception as e:
            logger.error(f"Agent construction crashed for tenant {tenant_id}, agent {agent_type}: {e}")
            self._record_error(key, f"construction failed: {e}")
        return None

    def _record_error(self, key: tuple[str, str], message: str) -> None:
        with self._lock:
            self._last_errors[key] = message

    def last_error(self, tenant_id: str, agent_type: str) -> Optional[str]:
        """Why the most recent get_or_create for this key returned None."""
        with self._lock:
            return self._last_errors.get((tenant_id, agent_type))

    def invalidate(self, tenant_id: str) -> int:
        """Drop every cached agent of the tenant. Returns how many were dropped."""
        with self._lock:
            evicted = list(self._instances.pop(tenant_id, {}).values())
            self._generations[tenant_id] += 1
            for key in [k for k in self._last_errors if k[0] == tenant_id]:
                del self._last_errors[key]
        if evicted:
            logger.info(f"Invalidated {len(evicted)} agent(s) for tenant {tenant_id}")
            self._close_in_background(evicted)
        return len(evicted)

    def cached_agent_types(self, tenant_id: str) -> list[str]:
        with self._lock:
            return sorted(self._instances.get(tenant_id, {}))

    def size(self) -> int:
        with self._lock:
            return sum(len(agents) for agents in self._instances.values())

    async def close(self) -> None:
        """Process shutdown: destroy every instance."""
        with self._lock:
            evicted = [a for agents in self._instances.values() for a in agents.values()]
            self._instances.clear()
        await self._close_agents(evicted)
        if self._close_tasks:
            await asyncio.gather(*self._close_tasks, return_exceptions=True)

    def _close_in_background(self, agents: list[BaseAgent]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller at shutdown): the agents are simply dropped
            return
        task = loop.create_task(self._close_agents(agents))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    @staticmethod
    async def _close_agents(agents: list[BaseAgent]) -> None:
        for agent in agents:
            try:
                await agent.aclose()
            except Exception as e:
                logger.warning(f"Error closing agent {agent.agent_type} of tenant {agent.tenant_id}: {e}")
