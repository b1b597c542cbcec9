"""Concurrent dispatch of one round: per-agent timeout, bounded retry, one slot per agent."""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime

from config.config_loader import AgentSpec
from consultants.adapters.base import AgentAdapter
from consultants.errors import AgentError, AgentMalformedResponse, AgentProcessError, AgentTimeout
from consultants.models import AgentResponse, ResponseStatus, RoundRecord, Task
from consultants.normalizer import error_response, normalize

logger = logging.getLogger(__name__)

ResponseParser = Callable[..., AgentResponse]


async def _call_agent(
    spec: AgentSpec,
    adapter: AgentAdapter | None,
    prompt: str,
    context: str | None,
    round_number: int,
    parse: ResponseParser,
    persona: str,
    retry_delay_sec: float,
) -> AgentResponse:
    """Call a single agent with retries.

    Never raises for agent failures; returns an error-valued response once
    retries are exhausted. Cancellation propagates.
    """
    if adapter is None:
        return error_response(
            spec, round_number, ResponseStatus.FAILED, "No adapter available", persona=persona, attempts=0
        )

    max_attempts = spec.max_retries + 1
    status = ResponseStatus.FAILED
    last_error = ""
    start = time.monotonic()

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            logger.info(
                "%s: retry %d/%d in round %d after %.1fs",
                spec.name, attempt - 1, spec.max_retries, round_number, retry_delay_sec,
            )
            await asyncio.sleep(retry_delay_sec)

        attempt_start = time.monotonic()
        try:
            try:
                output = await asyncio.wait_for(
                    adapter.invoke(prompt, context, spec.timeout_sec),
                    timeout=spec.timeout_sec,
                )
            except TimeoutError as exc:
                raise AgentTimeout(spec.name, f"Timeout after {spec.timeout_sec}s") from exc
            if output.exit_status != 0:
                raise AgentProcessError(spec.name, f"Exited with status {output.exit_status}")
        except AgentError as exc:
            status = ResponseStatus.FAILED
            last_error = str(exc)
            logger.warning("%s failed in round %d (attempt %d/%d): %s", spec.name, round_number, attempt, max_attempts, exc)
            continue
        except Exception as exc:
            status = ResponseStatus.FAILED
            last_error = str(AgentProcessError(spec.name, f"Unexpected error: {exc}"))
            logger.warning("%s unexpected failure in round %d: %s", spec.name, round_number, exc)
            continue

        latency_ms = int((time.monotonic() - attempt_start) * 1000)
        if not output.raw.strip():
            status = ResponseStatus.EMPTY
            last_error = f"[{spec.name}] Empty response"
            logger.warning("%s returned an empty response in round %d", spec.name, round_number)
            continue

        logger.info("%s answered round %d in %dms", spec.name, round_number, latency_ms)
        try:
            return parse(
                output.raw,
                spec,
                round_number,
                persona=persona,
                latency_ms=latency_ms,
                tokens_used=output.tokens_used,
                attempts=attempt,
            )
        except Exception as exc:
            malformed = AgentMalformedResponse(spec.name, f"unreadable output in round {round_number}: {exc}")
            logger.warning("%s", malformed)
            return error_response(
                spec,
                round_number,
                ResponseStatus.FAILED,
                str(malformed),
                persona=persona,
                latency_ms=latency_ms,
                attempts=attempt,
            )

    logger.error("%s: all %d attempts failed in round %d", spec.name, max_attempts, round_number)
    return error_response(
        spec,
        round_number,
        status,
        last_error,
        persona=persona,
        latency_ms=int((time.monotonic() - start) * 1000),
        attempts=max_attempts,
    )


async def dispatch(
    task: Task,
    agents: Sequence[AgentSpec],
    round_number: int,
    prompts: Mapping[str, str],
    adapters: Mapping[str, AgentAdapter],
    *,
    parse: ResponseParser = normalize,
    personas: Mapping[str, str] | None = None,
    context: str | None = None,
    retry_delay_sec: float = 5.0,
) -> RoundRecord:
    """Run every agent concurrently and join on all of them.

    Args:
        task: The task being answered (prompt used when an agent has no entry in prompts).
        agents: Agents to dispatch, in slot order.
        round_number: Round being dispatched (1-indexed).
        prompts: Per-agent prompt text, built by the caller.
        adapters: Adapter per agent name.
        parse: Turns raw output into an AgentResponse (normalize or a debate parser).
        personas: Optional persona label per agent, copied into responses.
        context: Optional context document forwarded to adapters.
        retry_delay_sec: Fixed pause between attempts for the same agent.

    Returns:
        RoundRecord with exactly one response per agent, in the order given.
    """
    personas = personas or {}
    logger.info("Starting round %d with %d agents", round_number, len(agents))

    tasks = [
        _call_agent(
            spec,
            adapters.get(spec.name),
            prompts.get(spec.name, task.prompt),
            context,
            round_number,
            parse,
            personas.get(spec.name, ""),
            retry_delay_sec,
        )
        for spec in agents
    ]
    responses = await asyncio.gather(*tasks)

    record = RoundRecord(
        number=round_number,
        responses=tuple(responses),
        timestamp=datetime.now().astimezone().isoformat(timespec="seconds"),
    )
    ok = len(record.non_error())
    logger.info("Round %d complete: %d/%d agents answered", round_number, ok, len(agents))
    return record
