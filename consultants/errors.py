"""Error taxonomy for consultations."""


class ConsultantsError(Exception):
    """Base for all consultation errors."""


class AgentError(ConsultantsError):
    """Raised when a single agent call fails. Always contained to that agent's slot."""

    def __init__(self, agent_name: str, message: str) -> None:
        self.agent_name = agent_name
        super().__init__(f"[{agent_name}] {message}")


class AgentTimeout(AgentError):
    """The agent did not answer within its wall-clock timeout."""


class AgentProcessError(AgentError):
    """Non-zero exit status or transport failure."""


class AgentMalformedResponse(AgentError):
    """Output did not match the response schema. Recovered by the normalizer."""


class DebateRoundFailure(AgentError):
    """An agent's debate turn failed; its previous response is carried forward."""


class InsufficientAgents(ConsultantsError):
    """Fewer agents than the configured minimum. Fatal, raised before dispatch."""

    def __init__(self, available: int, required: int = 2) -> None:
        self.available = available
        self.required = required
        super().__init__(f"Need at least {required} agents, got {available}")


class CacheUnavailable(ConsultantsError):
    """Cache storage could not be read or written. Non-fatal; the cache is bypassed."""
