"""Routing and escalation policy: who answers, and who gets a second, stronger try."""

import logging
from collections.abc import Sequence
from dataclasses import replace

from config.config_loader import TIERS, AgentSpec, RoutingConfig
from consultants.models import AgentResponse, ConsensusResult, RoundRecord

logger = logging.getLogger(__name__)

# Agents per routing mode; "full" uses RoutingConfig.max_agents.
_MODE_LIMITS = {"selective": 4, "single": 1}


def affinity(category: str, agent: str, cfg: RoutingConfig) -> int:
    return cfg.affinity.get(category.upper(), {}).get(agent, cfg.default_affinity)


def routing_mode(category: str, cfg: RoutingConfig) -> str:
    return cfg.modes.get(category.upper(), "full")


def select_agents(
    category: str,
    agents: Sequence[AgentSpec],
    cfg: RoutingConfig,
    min_agents: int = 2,
) -> list[AgentSpec]:
    """Pick the panel for a category by affinity.

    Agents at or above min_affinity are ranked by affinity (ties keep the
    given order). The routing mode caps the panel size, but never below
    min_agents; when too few agents clear the bar, the best remaining ones
    fill the gap.
    """
    if not cfg.enabled:
        return list(agents)

    mode = routing_mode(category, cfg)
    limit = max(_MODE_LIMITS.get(mode, cfg.max_agents), min_agents)

    ranked = sorted(agents, key=lambda spec: -affinity(category, spec.name, cfg))
    selected = [spec for spec in ranked if affinity(category, spec.name, cfg) >= cfg.min_affinity]
    if len(selected) < min_agents:
        selected += [spec for spec in ranked if spec not in selected][: min_agents - len(selected)]

    panel = selected[:limit]
    logger.info(
        "Routing %s (%s mode): %s",
        category, mode, ", ".join(f"{s.name}={affinity(category, s.name, cfg)}" for s in panel),
    )
    return panel


def apply_category_timeout(spec: AgentSpec, category: str, cfg: RoutingConfig) -> AgentSpec:
    override = cfg.category_timeouts.get(category.upper())
    if not cfg.enabled or override is None:
        return spec
    return replace(spec, timeout_sec=override)


def should_escalate(subject: ConsensusResult | AgentResponse | int, threshold: int) -> bool:
    """True when the confidence behind subject is below threshold.

    Accepts a whole-round ConsensusResult (mean confidence), a single
    response, or a bare confidence score. Error responses never escalate.
    """
    if isinstance(subject, ConsensusResult):
        return subject.confidence.samples > 0 and subject.confidence.mean < threshold
    if isinstance(subject, AgentResponse):
        return not subject.is_error and subject.confidence.score < threshold
    return 0 < subject < threshold


def escalate_spec(spec: AgentSpec) -> AgentSpec | None:
    """Higher-capability variant of the same agent, or None if it has none."""
    if not spec.escalation_model:
        return None
    tier_index = TIERS.index(spec.tier)
    return replace(
        spec,
        model=spec.escalation_model,
        tier=TIERS[min(tier_index + 1, len(TIERS) - 1)],
        escalation_model=None,
    )


def escalation_targets(
    record: RoundRecord,
    agents: Sequence[AgentSpec],
    threshold: int,
) -> list[AgentSpec]:
    """Escalated specs for every low-confidence slot that has a stronger variant."""
    targets: list[AgentSpec] = []
    for spec in agents:
        response = record.get(spec.name)
        if response is None or response.metadata.from_cache or not should_escalate(response, threshold):
            continue
        upgraded = escalate_spec(spec)
        if upgraded is None:
            logger.debug("%s below threshold but has no escalation model", spec.name)
            continue
        logger.info(
            "Escalating %s: confidence %d < %d, %s -> %s",
            spec.name, response.confidence.score, threshold, spec.model, upgraded.model,
        )
        targets.append(upgraded)
    return targets
