"""
Falcon Agent - lead qualification.

Asks the tenant's LLM to score a lead's fit (0-100) and explain why.
The rating is written back to the lead by the scheduler.
"""

import logging
from typing import Callable, Optional

from agenthub.agents.base_agent import BaseAgent
from agenthub.agents.llm_client import TenantLLMClient, create_llm_client
from agenthub.agents.schemas import QualificationOutput, SchemaParseError
from agenthub.shared.config import AnthropicConfig
from agenthub.shared.errors import ItemProcessingError
from agenthub.shared.models import AgentType, ItemResult, Lead, TenantCredentialBundle

logger = logging.getLogger(__name__)

FALCON_SYSTEM_PROMPT = (
    "You are a B2B sales lead qualification analyst. Score how well the lead "
    "fits the ideal customer profile. Respond with ONLY a JSON object: "
    '{"score": <0-100>, "rating": "high|medium|low", "reasoning": "<one paragraph>"}'
)


class FalconAgent(BaseAgent):
    """Scores leads with the tenant's own LLM credentials."""

    agent_type = AgentType.FALCON.value
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
        prompt = self._build_prompt(lead)
        response = await self._llm.complete(prompt, system=FALCON_SYSTEM_PROMPT)
        if response.get("error"):
            raise ItemProcessingError(f"LLM call failed: {response['error']}")
        try:
            parsed = QualificationOutput.parse_from_text(response.get("text", ""))
        except SchemaParseError as e:
            raise ItemProcessingError(str(e)) from e

        logger.debug(f"Lead {lead.id} qualified: score={parsed.score}, rating={parsed.rating}")
        return ItemResult(
            item_ref=lead.id,
            success=True,
            output={
                "score": parsed.score,
                "rating": parsed.rating,
                "reasoning": parsed.reasoning,
                "tokens_used": response.get("input_tokens", 0) + response.get("output_tokens", 0),
            },
        )

    def _build_prompt(self, lead: Lead) -> str:
        parts = ["Qualify this lead.", "", self._describe_lead(lead)]
        icp = self.configuration.get("ideal_customer_profile")
        if icp:
            parts += ["", f"Ideal customer profile: {icp}"]
        return "\n".join(parts)

    async def aclose(self) -> None:
        await self._llm.aclose()
