"""Confidence-weighted voting and consensus scoring over one round.

Everything here is a pure function of a RoundRecord: calling ``consensus``
twice on the same record yields equal results.
"""

import logging
import statistics

from consultants.models import (
    AgentResponse,
    ApproachTally,
    ConfidenceStats,
    ConsensusResult,
    RoundRecord,
)

logger = logging.getLogger(__name__)

STRATEGIES = ("weighted", "majority", "compare_only")
HIGH_VARIANCE_STDDEV = 2.0

# (lower bound inclusive, level), checked top-down
_LEVEL_BANDS = (
    (100, "unanimous"),
    (75, "high"),
    (50, "medium"),
    (25, "low"),
)


def consensus_level(score: int) -> str:
    for lower, level in _LEVEL_BANDS:
        if score >= lower:
            return level
    return "none"


def consensus_score(responses: list[AgentResponse]) -> int:
    """Share of responses in the largest approach group, 0-100, rounded half up."""
    total = len(responses)
    if total == 0:
        return 0
    counts: dict[str, int] = {}
    for r in responses:
        counts[r.approach_key] = counts.get(r.approach_key, 0) + 1
    largest = max(counts.values())
    return (largest * 200 + total) // (2 * total)


def confidence_stats(responses: list[AgentResponse]) -> ConfidenceStats:
    """Mean ± population stddev of the confidence scores, interval clamped to [0, 10]."""
    scores = [r.confidence.score for r in responses]
    if not scores:
        return ConfidenceStats(mean=0.0, stddev=0.0, low=0.0, high=0.0, samples=0)
    mean = statistics.fmean(scores)
    stddev = statistics.pstdev(scores) if len(scores) >= 2 else 0.0
    return ConfidenceStats(
        mean=mean,
        stddev=stddev,
        low=max(0.0, mean - stddev),
        high=min(10.0, mean + stddev),
        samples=len(scores),
        high_variance=stddev > HIGH_VARIANCE_STDDEV,
    )


def tally_approaches(responses: list[AgentResponse]) -> dict[str, ApproachTally]:
    """Group responses by case-normalized approach. Keys keep first-seen order.

    Each tally is labelled with the first-seen spelling of its approach.
    """
    groups: dict[str, list[AgentResponse]] = {}
    for r in responses:
        groups.setdefault(r.approach_key, []).append(r)
    return {
        key: ApproachTally(
            approach=members[0].response.approach.strip(),
            votes=len(members),
            weight=sum(m.confidence.score for m in members),
            supporters=tuple(m.agent for m in members),
        )
        for key, members in groups.items()
    }


def _weighted_rank(tally: ApproachTally) -> tuple:
    # Highest weight, then largest group, then lexicographically smallest agent name.
    return (-tally.weight, -tally.votes, min(tally.supporters))


def _majority_rank(tally: ApproachTally) -> tuple:
    return (-tally.votes, -tally.weight, min(tally.supporters))


def pick_winner(tally: dict[str, ApproachTally], strategy: str = "weighted") -> ApproachTally | None:
    if not tally or strategy == "compare_only":
        return None
    rank = _majority_rank if strategy == "majority" else _weighted_rank
    return min(tally.values(), key=rank)


def final_weighted_score(responses: list[AgentResponse], winning_key: str | None) -> float:
    """Support-weighted score on a 1-10 scale: supporters count 10x their confidence, dissenters 2x."""
    total_confidence = sum(r.confidence.score for r in responses)
    if total_confidence == 0:
        return 0.0
    weighted = sum(
        r.confidence.score * (10 if r.approach_key == winning_key else 2)
        for r in responses
    )
    return round(min(10.0, weighted / total_confidence), 1)


def _collect_topics(responses: list[AgentResponse]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    agreed: dict[str, None] = {}
    disagreed: dict[str, None] = {}
    for r in responses:
        if r.debate is None:
            continue
        for topic in r.debate.areas_of_agreement:
            agreed.setdefault(topic.strip(), None)
        for topic in r.debate.areas_of_disagreement:
            disagreed.setdefault(topic.strip(), None)
    return tuple(t for t in agreed if t), tuple(t for t in disagreed if t)


def consensus(round_record: RoundRecord, strategy: str = "weighted") -> ConsensusResult:
    """Compute the ConsensusResult for one round. Error-valued slots are ignored."""
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy '{strategy}' (expected one of {', '.join(STRATEGIES)})")

    responses = round_record.non_error()
    stats = confidence_stats(responses)

    if not responses:
        return ConsensusResult(score=0, level="none", confidence=stats, strategy=strategy)

    score = consensus_score(responses)
    tally = tally_approaches(responses)
    winner = pick_winner(tally, strategy)
    agreed, disagreed = _collect_topics(responses)

    winner_key = winner.approach.lower() if winner else None
    if winner is None:
        supporting: tuple[str, ...] = ()
        dissenting: tuple[str, ...] = ()
    else:
        supporting = tuple(r.agent for r in responses if r.approach_key == winner_key)
        dissenting = tuple(r.agent for r in responses if r.approach_key != winner_key)

    result = ConsensusResult(
        score=score,
        level=consensus_level(score),
        confidence=stats,
        tally=tally,
        recommended_approach=winner.approach if winner else None,
        supporting=supporting,
        dissenting=dissenting,
        agreed_topics=agreed,
        disagreed_topics=disagreed,
        final_weighted_score=final_weighted_score(responses, winner_key),
        strategy=strategy,
    )
    logger.debug(
        "Round %d consensus: %d%% (%s), confidence %s",
        round_record.number, result.score, result.level, stats.display,
    )
    return result
