"""
Sentinel Agent - inbound reply triage.

Classifies the latest message received from a lead so the sales team
can see who wants a meeting and who is out of office.
"""

import logging
from typing import Callable, Optional

from agenthub.agents.base_agent import BaseAgent
from agenthub.agents.llm_client import TenantLLMClient, create_llm_client
from agenthub.agents.schemas import REPLY_INTENTS, ReplyTriageOutput, SchemaParseError
from agenthub.shared.config import AnthropicConfig
from agenthub.shared.constants import MAX_LEAD_FIELD_IN_PROMPT
from agenthub.shared.errors import ItemProcessingError
from agenthub.shared.models import AgentType, ItemResult, Lead, TenantCredentialBundle

logger = logging.getLogger(__name__)

SENTINEL_SYSTEM_PROMPT = (
    "You triage replies to sales outreach. Classify the reply intent as one of: "
    + ", ".join(REPLY_INTENTS)
    + '. Respond with ONLY a JSON object: {"intent": "<intent>", "summary": "<one sentence>"}'
)


class SentinelAgent(BaseAgent):
    """Classifies lead replies with the tenant's own LLM credentials."""

    agent_type = AgentType.SENTINEL.value
    required_secrets = ("anthropic_api_key",)

    def __init__(
        self,
        tenant_id: str,
        bundle: TenantCredentialBundle,
        config: Optional[AnthropicConfig] = None,
        llm_factory: Callable[[str, AnthropicConfig], TenantLLMClient] = create_llm_client,
    ):
        super().__init__(tenant_id, bundle)
        self._llm = llm_factory(bundle.get_secret("anthropic_api_key"), config or AnthropicConfig())

    async def process_item(self, lead: Lead) -> ItemResult:
        self._check_tenant(lead)
        if not lead.last_message.strip():
            raise ItemProcessingError(f"Lead {lead.id} has no message to triage")

        prompt = (
            f"{self._describe_lead(lead)}\n\n"
            f"Reply:\n{lead.last_message[:MAX_LEAD_FIELD_IN_PROMPT]}"
        )
        response = await self._llm.complete(prompt, system=SENTINEL_SYSTEM_PROMPT)
        if response.get("error"):
            raise ItemProcessingError(f"LLM call failed: {response['error']}")
        try:
            parsed = ReplyTriageOutput.parse_from_text(response.get("text", ""))
        except SchemaParseError as e:
            raise ItemProcessingError(str(e)) from e

        return ItemResult(
            item_ref=lead.id,
            success=True,
            output={"intent": parsed.intent, "summary": parsed.summary},
        )

    async def aclose(self) -> None:
        await self._llm.aclose()
