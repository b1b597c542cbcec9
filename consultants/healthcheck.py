"""Adapter health checks: ping each agent before starting a consultation."""

import asyncio
import logging

from consultants.adapters.base import AgentAdapter

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, adapter: AgentAdapter, timeout: float) -> tuple[str, bool, str]:
    """Ping a single agent. Returns (name, ok, error_message)."""
    try:
        output = await asyncio.wait_for(adapter.invoke(_PING_PROMPT, None, timeout), timeout=timeout)
    except TimeoutError:
        return name, False, f"No answer within {timeout:.0f}s"
    except Exception as exc:
        return name, False, str(exc)
    if output.exit_status != 0:
        return name, False, f"Exited with status {output.exit_status}"
    if not output.raw.strip():
        return name, False, "Empty response"
    return name, True, ""


async def run_health_checks(
    adapters: dict[str, AgentAdapter],
    timeout: float = _TIMEOUT_SEC,
) -> dict[str, tuple[bool, str]]:
    """Ping all agents in parallel.

    Returns:
        Dict mapping agent name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, a, timeout) for n, a in adapters.items()))
    for name, ok, err in results:
        if not ok:
            logger.debug("Health check failed for %s: %s", name, err)
    return {name: (ok, err) for name, ok, err in results}
