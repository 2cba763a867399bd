"""
Shared test fixtures for the AgentHub test suite.
"""

import asyncio
import os
import sys
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Optional

import pytest

# Ensure agenthub is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from agenthub.agents.base_agent import BaseAgent
from agenthub.agents.registry import AgentRegistry
from agenthub.orchestrator.broadcaster import EventBroadcaster
from agenthub.orchestrator.engine import JobOrchestrator
from agenthub.persistence.job_store import InMemoryJobStore
from agenthub.persistence.lead_store import InMemoryLeadStore
from agenthub.shared.config import AppConfig, SchedulerConfig
from agenthub.shared.entitlements import PlanEntitlements
from agenthub.shared.errors import ItemProcessingError
from agenthub.shared.models import AgentType, ItemResult, Lead
from agenthub.shared.vault import LocalCredentialVault


@dataclass
class AgentBehavior:
    """Script for FakeAgent: which items fail, how long each takes, hooks."""
    fail_refs: set = field(default_factory=set)
    fail_all: bool = False
    delay: float = 0.0
    on_item: Optional[Callable[[str], Awaitable]] = None
    processed: list = field(default_factory=list)
    constructed: list = field(default_factory=list)
    closed: list = field(default_factory=list)


class FakeAgent(BaseAgent):
    """Deterministic agent driven by an AgentBehavior."""

    agent_type = "fake"
    required_secrets = ("api_key",)

    def __init__(self, tenant_id, bundle, behavior: AgentBehavior):
        super().__init__(tenant_id, bundle)
        self.behavior = behavior
        behavior.constructed.append((tenant_id, bundle.agent_type))

    async def process_item(self, lead: Lead) -> ItemResult:
        self._check_tenant(lead)
        if self.behavior.on_item:
            await self.behavior.on_item(lead.id)
        if self.behavior.delay:
            await asyncio.sleep(self.behavior.delay)
        self.behavior.processed.append(lead.id)
        if self.behavior.fail_all or lead.id in self.behavior.fail_refs:
            raise ItemProcessingError(f"scripted failure for {lead.id}")
        return ItemResult(
            item_ref=lead.id, success=True,
            output={"score": 90, "rating": "high", "reasoning": "fake"},
        )

    async def aclose(self) -> None:
        self.behavior.closed.append(self.tenant_id)


class RecordingConnection:
    """Stands in for a WebSocket: records every message it is sent."""

    def __init__(self, fail: bool = False):
        self.messages: list[dict] = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.messages.append(data)

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@asynccontextmanager
async def _running(orchestrator: JobOrchestrator):
    await orchestrator.start()
    try:
        yield orchestrator
    finally:
        await orchestrator.stop()


async def _add_leads(store: InMemoryLeadStore, tenant_id: str, count: int, **fields) -> list[str]:
    ids = []
    for i in range(1, count + 1):
        lead = Lead(id=f"{tenant_id}-lead-{i}", tenant_id=tenant_id, full_name=f"Lead {i}",
                    company=f"Company {i}", **fields)
        await store.add_lead(lead)
        ids.append(lead.id)
    return ids


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def running():
    return _running


@pytest.fixture
def add_leads():
    return _add_leads


@pytest.fixture
def behavior():
    return AgentBehavior()


@pytest.fixture
def vault():
    v = LocalCredentialVault("test-encryption-key")
    for agent_type in AgentType:
        v.put_credential_bundle("T1", agent_type.value, {"api_key": "t1-secret"})
        v.put_credential_bundle("T2", agent_type.value, {"api_key": "t2-secret"})
    return v


@pytest.fixture
def entitlements():
    e = PlanEntitlements()
    e.set_subscription("T1", "ultra")
    e.set_subscription("T2", "ultra")
    return e


@pytest.fixture
def leads():
    return InMemoryLeadStore()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def registry(entitlements, behavior):
    r = AgentRegistry(entitlements)
    for agent_type in AgentType:
        r.register(agent_type.value, partial(FakeAgent, behavior=behavior))
    return r


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(
        max_workers=2,
        per_tenant_concurrency=1,
        default_max_retries=3,
        item_timeout_seconds=2.0,
        store_write_attempts=3,
        store_backoff_base_seconds=0.0,
        auto_retry=False,
    )


@pytest.fixture
def app_config(scheduler_config):
    return AppConfig(scheduler=scheduler_config, environment="test")


@pytest.fixture
def broadcaster():
    return EventBroadcaster(send_timeout_seconds=1.0)


@pytest.fixture
def orchestrator(app_config, job_store, vault, entitlements, leads, registry, broadcaster):
    return JobOrchestrator(
        app_config, job_store, vault, entitlements, leads,
        registry=registry, broadcaster=broadcaster,
    )


@pytest.fixture
def recorder():
    return RecordingConnection()


@pytest.fixture
def make_connection():
    return RecordingConnection
