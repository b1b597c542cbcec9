"""Consultation entry point: cache, round 1, escalation, debate, final consensus."""

import asyncio
import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime
from functools import partial

from config.config_loader import AgentSpec, AppConfig
from consultants.adapters.base import AgentAdapter
from consultants.cache import ResponseCache, fingerprint
from consultants.debate import DebateController
from consultants.dispatcher import dispatch
from consultants.errors import AgentError, CacheUnavailable, InsufficientAgents
from consultants.models import (
    AgentResponse,
    ConsensusResult,
    ConsultationResult,
    ConsultOptions,
    DebateSummary,
    RoundRecord,
    Task,
)
from consultants.normalizer import normalize
from consultants.routing import apply_category_timeout, escalation_targets, select_agents
from consultants.voting import STRATEGIES, consensus

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[AgentSpec], AgentAdapter]
RoundCallback = Callable[[RoundRecord, ConsensusResult], None]

_PERSONA_NAME = re.compile(r'"([^"]+)"')


def persona_label(persona_text: str) -> str:
    """Short label for a persona prompt: the first quoted name, else the first line."""
    match = _PERSONA_NAME.search(persona_text)
    if match:
        return match.group(1)
    return persona_text.strip().splitlines()[0] if persona_text.strip() else ""


def _build_adapters(specs: Sequence[AgentSpec], factory: AdapterFactory) -> dict[str, AgentAdapter]:
    adapters: dict[str, AgentAdapter] = {}
    for spec in specs:
        try:
            adapters[spec.name] = factory(spec)
        except AgentError as exc:
            # Missing adapter becomes a failed slot in the dispatcher.
            logger.warning("Cannot build adapter: %s", exc)
    return adapters


def _merge(number: int, order: Sequence[str], *sources: RoundRecord | dict[str, AgentResponse]) -> RoundRecord:
    """Assemble one slot per agent, in panel order, from the first source that has it."""
    responses = []
    for name in order:
        for source in sources:
            found = source.get(name)
            if found is not None:
                responses.append(found)
                break
    return RoundRecord(
        number=number,
        responses=tuple(responses),
        timestamp=datetime.now().astimezone().isoformat(timespec="seconds"),
    )


class _CacheGuard:
    """Wraps the cache so an I/O failure disables it for the rest of the run."""

    def __init__(self, cache: ResponseCache | None, task: Task) -> None:
        self._cache = cache
        self._fp = fingerprint(task) if cache is not None else ""

    def lookup(self, agent: str) -> AgentResponse | None:
        if self._cache is None:
            return None
        try:
            return self._cache.lookup(self._fp, agent)
        except CacheUnavailable as exc:
            logger.warning("Cache unavailable, bypassing: %s", exc)
            self._cache = None
            return None

    def store(self, response: AgentResponse) -> None:
        if self._cache is None:
            return
        try:
            self._cache.store(self._fp, response)
        except CacheUnavailable as exc:
            logger.warning("Cache unavailable, bypassing: %s", exc)
            self._cache = None


async def consult(
    task: Task,
    agents: Sequence[AgentSpec],
    options: ConsultOptions,
    *,
    config: AppConfig,
    adapter_factory: AdapterFactory,
    cache: ResponseCache | None = None,
    on_round_complete: RoundCallback | None = None,
) -> ConsultationResult:
    """Run one full consultation.

    Raises InsufficientAgents before any dispatch when fewer than the
    configured minimum of agents is given, and ValueError for an unknown
    strategy. Every other failure is contained in the affected agent's slot.
    A cancelled consultation returns the rounds completed so far, flagged
    ``aborted``.
    """
    required = max(2, config.defaults.min_agents)
    if len(agents) < required:
        raise InsufficientAgents(len(agents), required)
    if options.strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy '{options.strategy}' (expected one of {', '.join(STRATEGIES)})")

    started = time.monotonic()
    panel = [
        apply_category_timeout(spec, task.category, config.routing)
        for spec in select_agents(task.category, agents, config.routing, required)
    ]
    order = [spec.name for spec in panel]
    skipped = [spec.name for spec in agents if spec.name not in order]

    persona_texts = {name: config.prompts.personas.get(name, "") for name in order}
    labels = {name: persona_label(text) for name, text in persona_texts.items()}
    prompts = {
        name: config.prompts.initial.format(
            persona=persona_texts[name],
            output_format=config.prompts.output_format,
            question=task.prompt,
        )
        for name in order
    }
    adapters = _build_adapters(panel, adapter_factory)
    parse = partial(normalize, fallback_confidence=config.defaults.fallback_confidence)
    guard = _CacheGuard(cache if options.enable_cache else None, task)

    rounds: list[RoundRecord] = []
    escalated: list[str] = []
    cached: dict[str, AgentResponse] = {}
    debate_summary: DebateSummary | None = None
    controller: DebateController | None = None
    aborted = False
    latest: ConsensusResult | None = None

    try:
        for spec in panel:
            hit = guard.lookup(spec.name)
            if hit is not None and not hit.is_error:
                cached[spec.name] = replace(
                    hit,
                    persona=hit.persona or labels[spec.name],
                    metadata=replace(hit.metadata, round_number=1, from_cache=True),
                )

        fresh = await dispatch(
            task,
            [spec for spec in panel if spec.name not in cached],
            1,
            prompts,
            adapters,
            parse=parse,
            personas=labels,
            context=task.context,
            retry_delay_sec=config.defaults.retry_delay_sec,
        )
        first = _merge(1, order, cached, fresh)

        if options.enable_escalation:
            targets = escalation_targets(first, panel, config.escalation.confidence_threshold)
            if targets:
                escalated_adapters = _build_adapters(targets, adapter_factory)
                retry = await dispatch(
                    task,
                    targets,
                    1,
                    prompts,
                    escalated_adapters,
                    parse=parse,
                    personas=labels,
                    context=task.context,
                    retry_delay_sec=config.defaults.retry_delay_sec,
                )
                replacements: dict[str, AgentResponse] = {}
                for response in retry.responses:
                    if response.is_error:
                        logger.warning("Escalation of %s failed, keeping original answer", response.agent)
                        continue
                    replacements[response.agent] = replace(
                        response, metadata=replace(response.metadata, escalated=True)
                    )
                    escalated.append(response.agent)
                # Later rounds talk to the stronger variant.
                for target in targets:
                    if target.name in replacements and target.name in escalated_adapters:
                        panel[order.index(target.name)] = target
                        adapters[target.name] = escalated_adapters[target.name]
                first = _merge(1, order, replacements, first)

        for response in first.responses:
            if not response.is_error and not response.metadata.from_cache:
                guard.store(response)

        rounds.append(first)
        latest = consensus(first, options.strategy)
        if on_round_complete:
            on_round_complete(first, latest)

        if options.enable_debate and options.debate_rounds > 1:
            controller = DebateController(
                panel,
                adapters,
                config.prompts,
                config.debate,
                max_rounds=options.debate_rounds,
                strategy=options.strategy,
                personas=persona_texts,
                retry_delay_sec=config.defaults.retry_delay_sec,
                fallback_confidence=config.defaults.fallback_confidence,
                on_round_complete=on_round_complete,
            )
            await controller.run(task, first, latest)
            rounds = controller.rounds
    except asyncio.CancelledError:
        aborted = True
        if controller is not None:
            rounds = controller.rounds
        logger.warning("Consultation aborted; keeping %d completed round(s)", len(rounds))

    if controller is not None:
        debate_summary = controller.summary()

    last = rounds[-1] if rounds else RoundRecord(number=0, responses=())
    final = consensus(last, options.strategy)
    statuses = last.statuses() if rounds else {name: "aborted" for name in order}
    statuses.update({name: "skipped" for name in skipped})

    result = ConsultationResult(
        task=task,
        rounds=rounds,
        consensus=final,
        agent_statuses=statuses,
        debate_summary=debate_summary,
        escalated=escalated,
        cached_agents=list(cached),
        aborted=aborted,
        duration_sec=round(time.monotonic() - started, 2),
    )
    logger.info(
        "Consultation finished: %d round(s), consensus %d%% (%s)",
        len(rounds), final.score, final.level,
    )
    return result
