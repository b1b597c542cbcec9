"""OpenAI and OpenAI-compatible (xAI, Qwen, DeepSeek, ...) adapter using openai SDK with native async."""

import asyncio
import logging
import os

from openai import AsyncOpenAI

from config.config_loader import AgentSpec
from consultants.adapters.base import AdapterOutput, AgentAdapter, compose_prompt
from consultants.errors import AgentProcessError, AgentTimeout

logger = logging.getLogger(__name__)


class OpenAICompatAdapter(AgentAdapter):
    """Chat-completions adapter. base_url selects a compatible endpoint."""

    def __init__(self, spec: AgentSpec) -> None:
        super().__init__(spec)
        api_key = os.environ.get(spec.api_key_env or "", "").strip()
        if not api_key:
            raise AgentProcessError(spec.name, f"Missing API key: {spec.api_key_env}")
        if spec.base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=spec.base_url)
        else:
            self._client = AsyncOpenAI(api_key=api_key)

    async def invoke(self, prompt: str, context: str | None, timeout: float) -> AdapterOutput:
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._spec.model,
                    messages=[{"role": "user", "content": compose_prompt(prompt, context)}],
                    max_tokens=self._spec.max_tokens,
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise AgentTimeout(self._spec.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise AgentProcessError(self._spec.name, f"API call failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice else None

        tokens_used: int | None = None
        if response.usage:
            tokens_used = response.usage.total_tokens

        logger.debug("OpenAI-compatible %s: %s tokens", self._spec.model, tokens_used)

        return AdapterOutput(raw=content or "", tokens_used=tokens_used)
