"""Gemini adapter using google-genai SDK with native async."""

import asyncio
import logging
import os

from google import genai
from google.genai import types as genai_types

from config.config_loader import AgentSpec
from consultants.adapters.base import AdapterOutput, AgentAdapter, compose_prompt
from consultants.errors import AgentProcessError, AgentTimeout

logger = logging.getLogger(__name__)


class GeminiAdapter(AgentAdapter):
    """Google Gemini adapter via google-genai SDK."""

    def __init__(self, spec: AgentSpec) -> None:
        super().__init__(spec)
        api_key = os.environ.get(spec.api_key_env or "", "").strip()
        if not api_key:
            raise AgentProcessError(spec.name, f"Missing API key: {spec.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    async def invoke(self, prompt: str, context: str | None, timeout: float) -> AdapterOutput:
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._spec.model,
                    contents=compose_prompt(prompt, context),
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=self._spec.max_tokens,
                    ),
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise AgentTimeout(self._spec.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise AgentProcessError(self._spec.name, f"API call failed: {exc}") from exc

        tokens_used: int | None = None
        if response.usage_metadata:
            tokens_used = response.usage_metadata.total_token_count

        logger.debug("Gemini %s: %s tokens", self._spec.model, tokens_used)

        return AdapterOutput(raw=response.text or "", tokens_used=tokens_used)
