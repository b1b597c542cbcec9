"""Anthropic Claude adapter using anthropic SDK with native async."""

import asyncio
import logging
import os

import anthropic as anthropic_sdk

from config.config_loader import AgentSpec
from consultants.adapters.base import AdapterOutput, AgentAdapter, compose_prompt
from consultants.errors import AgentProcessError, AgentTimeout

logger = logging.getLogger(__name__)


class AnthropicAdapter(AgentAdapter):
    """Anthropic Claude adapter via anthropic SDK."""

    def __init__(self, spec: AgentSpec) -> None:
        super().__init__(spec)
        api_key = os.environ.get(spec.api_key_env or "", "").strip()
        if not api_key:
            raise AgentProcessError(spec.name, f"Missing API key: {spec.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    async def invoke(self, prompt: str, context: str | None, timeout: float) -> AdapterOutput:
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._spec.model,
                    max_tokens=self._spec.max_tokens,
                    messages=[{"role": "user", "content": compose_prompt(prompt, context)}],
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise AgentTimeout(self._spec.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise AgentProcessError(self._spec.name, f"API call failed: {exc}") from exc

        text_blocks = [b.text for b in (response.content or []) if b.type == "text"]

        tokens_used: int | None = None
        if response.usage:
            tokens_used = response.usage.input_tokens + response.usage.output_tokens

        logger.debug("Anthropic %s: %s tokens", self._spec.model, tokens_used)

        return AdapterOutput(raw="\n".join(text_blocks), tokens_used=tokens_used)
