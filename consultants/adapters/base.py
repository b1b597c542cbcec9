"""Abstract base for all agent adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from config.config_loader import AgentSpec


@dataclass(frozen=True)
class AdapterOutput:
    raw: str
    exit_status: int = 0
    tokens_used: int | None = None


def compose_prompt(prompt: str, context: str | None) -> str:
    """Prepend the context document, if any, to the prompt."""
    if not context:
        return prompt
    return f"{context}\n\n# Additional Question\n{prompt}"


class AgentAdapter(ABC):
    """Thin I/O wrapper around one external responder (local program or HTTP endpoint)."""

    def __init__(self, spec: AgentSpec) -> None:
        self._spec = spec

    @property
    def spec(self) -> AgentSpec:
        return self._spec

    def name(self) -> str:
        return self._spec.name

    def model_string(self) -> str:
        return self._spec.model

    @abstractmethod
    async def invoke(self, prompt: str, context: str | None, timeout: float) -> AdapterOutput:
        """Send the prompt and return the raw output.

        Args:
            prompt: The full prompt text to send.
            context: Optional context document to accompany the prompt.
            timeout: Wall-clock limit for this call, in seconds.

        Returns:
            AdapterOutput with the raw text and exit status (0 on success).

        Raises:
            AgentTimeout: When the call exceeds the timeout.
            AgentProcessError: On transport failure or invalid response.
        """
        ...
