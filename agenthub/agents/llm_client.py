"""
Per-tenant LLM client for agents that reason over leads.

Every tenant brings its own Anthropic API key in its credential bundle,
so a client is created per agent instance and never shared.

Production hardening:
- All LLM calls wrapped in asyncio.wait_for() with configurable timeout
- Exponential backoff retry (3 attempts) on transient failures
- Clear error categorization: transient vs permanent failures
"""

import asyncio
import logging
from typing import Optional

import anthropic

from agenthub.shared.config import AnthropicConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Retry / timeout constants
# ---------------------------------------------------------------------------

LLM_CALL_TIMEOUT_SECONDS = 60       # Max time for a single LLM API call
LLM_MAX_RETRIES = 3                  # Total attempts (1 initial + 2 retries)
LLM_BACKOFF_BASE_SECONDS = 2.0      # Exponential backoff base: 2s, 4s, 8s

# Errors that are worth retrying (transient)
_TRANSIENT_ERROR_KEYWORDS = (
    "timeout", "timed out", "rate_limit", "rate limit",
    "overloaded", "capacity", "529", "503", "502",
    "connection", "reset", "eof", "broken pipe",
)


def _is_transient_error(error: Exception) -> bool:
    """Determine if an error is transient and worth retrying."""
    error_str = str(error).lower()
    return any(keyword in error_str for keyword in _TRANSIENT_ERROR_KEYWORDS)


def _error_response(message: str) -> dict:
    return {"text": "", "error": message, "input_tokens": 0, "output_tokens": 0}


async def _retry_with_backoff(coro_factory, operation_name: str) -> dict:
    """
    Execute an async operation with timeout + exponential backoff retry.

    Args:
        coro_factory: A callable that returns a new coroutine on each call.
                      (Must be a factory because coroutines can't be re-awaited.)
        operation_name: For logging (e.g., "Anthropic API call").

    Returns:
        The result dict from the coroutine, or an error dict on final failure.
    """
    last_error = None
    for attempt in range(1, LLM_MAX_RETRIES + 1):
        try:
            return await asyncio.wait_for(
                coro_factory(),
                timeout=LLM_CALL_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            last_error = TimeoutError(
                f"{operation_name} timed out after {LLM_CALL_TIMEOUT_SECONDS}s"
            )
            logger.warning(
                f"{operation_name} timeout (attempt {attempt}/{LLM_MAX_RETRIES})"
            )
        except Exception as e:
            last_error = e
            if not _is_transient_error(e):
                logger.error(f"{operation_name} permanent error: {e}")
                return _error_response(str(e))
            logger.warning(
                f"{operation_name} transient error (attempt {attempt}/{LLM_MAX_RETRIES}): {e}"
            )

        if attempt < LLM_MAX_RETRIES:
            backoff = LLM_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
            logger.info(f"{operation_name} retrying in {backoff:.1f}s...")
            await asyncio.sleep(backoff)

    logger.error(
        f"{operation_name} failed after {LLM_MAX_RETRIES} attempts: {last_error}"
    )
    return _error_response(f"All {LLM_MAX_RETRIES} attempts failed: {last_error}")


class TenantLLMClient:
    """Claude API client bound to one tenant's API key."""

    def __init__(self, api_key: str, config: AnthropicConfig):
        self._config = config
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._total_input = 0
        self._total_output = 0

    async def complete(self, prompt: str, system: Optional[str] = None) -> dict:
        """Single-turn completion. Returns {"text", "error", "input_tokens", "output_tokens"}."""
        kwargs = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        return await _retry_with_backoff(
            lambda: self._raw_call(kwargs),
            "Anthropic API call",
        )

    async def _raw_call(self, kwargs: dict) -> dict:
        """Single Anthropic API call attempt (used by retry wrapper)."""
        response = await self._client.messages.create(**kwargs)
        usage = response.usage
        self._total_input += usage.input_tokens
        self._total_output += usage.output_tokens
        text = "\n".join(
            block.text for block in response.content if block.type == "text"
        )
        return {
            "text": text,
            "error": None,
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
        }

    def get_usage(self) -> dict:
        return {"total_input_tokens": self._total_input, "total_output_tokens": self._total_output}

    async def aclose(self) -> None:
        await self._client.close()


def create_llm_client(api_key: str, config: AnthropicConfig) -> TenantLLMClient:
    """Factory: one client per tenant agent instance."""
    return TenantLLMClient(api_key, config)
