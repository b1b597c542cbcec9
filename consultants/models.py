"""Dataclasses for the consultation pipeline: tasks, responses, rounds, consensus, debate state."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Task:
    prompt: str
    context: str | None = None
    category: str = "GENERAL"
    source: str = "cli"


class ResponseStatus(str, Enum):
    OK = "ok"                # conforming structured answer
    DEGRADED = "degraded"    # unstructured answer wrapped by the normalizer
    EMPTY = "empty"          # adapter returned no output
    FAILED = "failed"        # timeout or process/transport failure


@dataclass(frozen=True)
class ResponseBody:
    summary: str
    detailed: str
    approach: str
    pros: tuple[str, ...] = ()
    cons: tuple[str, ...] = ()
    caveats: tuple[str, ...] = ()


@dataclass(frozen=True)
class Confidence:
    score: int
    reasoning: str
    uncertainty_factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResponseMetadata:
    round_number: int
    latency_ms: int = 0
    tokens_used: int | None = None
    timestamp: str = ""
    attempts: int = 1
    from_cache: bool = False
    escalated: bool = False


@dataclass(frozen=True)
class Critique:
    target: str
    critique: str
    severity: str = "moderate"   # minor | moderate | major


@dataclass(frozen=True)
class DebateTurn:
    round: int
    position_changed: bool
    updated_stance: str
    confidence_delta: int = 0
    original_stance: str = ""
    critiques: tuple[Critique, ...] = ()
    incorporated_from: tuple[tuple[str, str], ...] = ()
    areas_of_agreement: tuple[str, ...] = ()
    areas_of_disagreement: tuple[str, ...] = ()


@dataclass(frozen=True)
class AgentResponse:
    agent: str
    model: str
    status: ResponseStatus
    response: ResponseBody
    confidence: Confidence
    metadata: ResponseMetadata
    persona: str = ""
    debate: DebateTurn | None = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.status in (ResponseStatus.EMPTY, ResponseStatus.FAILED)

    @property
    def approach_key(self) -> str:
        return self.response.approach.strip().lower()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire schema (consultant/model/persona/response/confidence/metadata)."""
        data: dict[str, Any] = {
            "consultant": self.agent,
            "model": self.model,
            "persona": self.persona,
            "status": self.status.value,
            "response": {
                "summary": self.response.summary,
                "detailed": self.response.detailed,
                "approach": self.response.approach,
                "pros": list(self.response.pros),
                "cons": list(self.response.cons),
                "caveats": list(self.response.caveats),
            },
            "confidence": {
                "score": self.confidence.score,
                "reasoning": self.confidence.reasoning,
                "uncertainty_factors": list(self.confidence.uncertainty_factors),
            },
            "metadata": {
                "tokens_used": self.metadata.tokens_used,
                "latency_ms": self.metadata.latency_ms,
                "timestamp": self.metadata.timestamp,
                "round": self.metadata.round_number,
                "attempts": self.metadata.attempts,
                "from_cache": self.metadata.from_cache,
                "escalated": self.metadata.escalated,
            },
        }
        if self.debate is not None:
            turn = self.debate
            data["debate"] = {
                "round": turn.round,
                "position_changed": turn.position_changed,
                "original_stance": turn.original_stance,
                "updated_stance": turn.updated_stance,
                "confidence_delta": turn.confidence_delta,
                "critiques": [
                    {"target": c.target, "critique": c.critique, "severity": c.severity}
                    for c in turn.critiques
                ],
                "incorporated_from": [{"source": s, "idea": i} for s, i in turn.incorporated_from],
                "areas_of_agreement": list(turn.areas_of_agreement),
                "areas_of_disagreement": list(turn.areas_of_disagreement),
            }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentResponse":
        """Inverse of to_dict. Used to rehydrate cache entries."""
        body = data["response"]
        conf = data["confidence"]
        meta = data.get("metadata", {})
        debate_raw = data.get("debate")
        debate = None
        if debate_raw:
            debate = DebateTurn(
                round=int(debate_raw["round"]),
                position_changed=bool(debate_raw["position_changed"]),
                original_stance=debate_raw.get("original_stance", ""),
                updated_stance=debate_raw.get("updated_stance", ""),
                confidence_delta=int(debate_raw.get("confidence_delta", 0)),
                critiques=tuple(
                    Critique(c["target"], c["critique"], c.get("severity", "moderate"))
                    for c in debate_raw.get("critiques", [])
                ),
                incorporated_from=tuple(
                    (i["source"], i["idea"]) for i in debate_raw.get("incorporated_from", [])
                ),
                areas_of_agreement=tuple(debate_raw.get("areas_of_agreement", [])),
                areas_of_disagreement=tuple(debate_raw.get("areas_of_disagreement", [])),
            )
        return cls(
            agent=data["consultant"],
            model=data.get("model", ""),
            persona=data.get("persona", ""),
            status=ResponseStatus(data.get("status", "ok")),
            response=ResponseBody(
                summary=body["summary"],
                detailed=body["detailed"],
                approach=body["approach"],
                pros=tuple(body.get("pros", [])),
                cons=tuple(body.get("cons", [])),
                caveats=tuple(body.get("caveats", [])),
            ),
            confidence=Confidence(
                score=int(conf["score"]),
                reasoning=conf.get("reasoning", ""),
                uncertainty_factors=tuple(conf.get("uncertainty_factors", [])),
            ),
            metadata=ResponseMetadata(
                round_number=int(meta.get("round", 1)),
                latency_ms=int(meta.get("latency_ms", 0)),
                tokens_used=meta.get("tokens_used"),
                timestamp=meta.get("timestamp", ""),
                attempts=int(meta.get("attempts", 1)),
                from_cache=bool(meta.get("from_cache", False)),
                escalated=bool(meta.get("escalated", False)),
            ),
            debate=debate,
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RoundRecord:
    number: int
    responses: tuple[AgentResponse, ...]
    timestamp: str = ""

    def __post_init__(self) -> None:
        names = [r.agent for r in self.responses]
        if len(names) != len(set(names)):
            raise ValueError(f"Round {self.number} has duplicate agents: {names}")

    @property
    def agents(self) -> list[str]:
        return [r.agent for r in self.responses]

    def get(self, agent: str) -> AgentResponse | None:
        return next((r for r in self.responses if r.agent == agent), None)

    def non_error(self) -> list[AgentResponse]:
        return [r for r in self.responses if not r.is_error]

    def statuses(self) -> dict[str, str]:
        return {r.agent: r.status.value for r in self.responses}


@dataclass(frozen=True)
class ApproachTally:
    approach: str
    votes: int
    weight: int
    supporters: tuple[str, ...]


@dataclass(frozen=True)
class ConfidenceStats:
    mean: float
    stddev: float
    low: float
    high: float
    samples: int
    high_variance: bool = False

    @property
    def display(self) -> str:
        text = f"{self.mean:.1f} ± {self.stddev:.1f}"
        if self.high_variance:
            text += " (high variance - uncertainty detected)"
        return text


@dataclass(frozen=True)
class ConsensusResult:
    score: int
    level: str
    confidence: ConfidenceStats
    tally: dict[str, ApproachTally] = field(default_factory=dict)
    recommended_approach: str | None = None
    supporting: tuple[str, ...] = ()
    dissenting: tuple[str, ...] = ()
    agreed_topics: tuple[str, ...] = ()
    disagreed_topics: tuple[str, ...] = ()
    final_weighted_score: float = 0.0
    strategy: str = "weighted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "confidence": {
                "mean": self.confidence.mean,
                "stddev": self.confidence.stddev,
                "interval": {"low": self.confidence.low, "high": self.confidence.high},
                "samples": self.confidence.samples,
                "high_variance": self.confidence.high_variance,
            },
            "tally": {
                key: {"approach": t.approach, "votes": t.votes, "weight": t.weight, "supporters": list(t.supporters)}
                for key, t in self.tally.items()
            },
            "recommended_approach": self.recommended_approach,
            "supporting": list(self.supporting),
            "dissenting": list(self.dissenting),
            "agreed_topics": list(self.agreed_topics),
            "disagreed_topics": list(self.disagreed_topics),
            "final_weighted_score": self.final_weighted_score,
            "strategy": self.strategy,
        }


class DebateStatus(str, Enum):
    AWAITING_ROUND = "awaiting_round"
    DONE = "done"


@dataclass
class DebateRoundSummary:
    round: int
    responded: int
    position_changes: int
    total_critiques: int
    carried_forward: list[str] = field(default_factory=list)

    @property
    def stability(self) -> str:
        if self.position_changes == 0:
            return "stable"
        if self.position_changes <= 1:
            return "mostly_stable"
        return "volatile"


@dataclass
class DebateState:
    """Running state of one debate; discarded after the final consensus."""

    max_rounds: int
    current_round: int = 1
    status: DebateStatus = DebateStatus.AWAITING_ROUND
    stop_reason: str = ""
    position_changed: dict[str, bool] = field(default_factory=dict)
    critiques: list[tuple[int, str, Critique]] = field(default_factory=list)
    round_summaries: list[DebateRoundSummary] = field(default_factory=list)


@dataclass(frozen=True)
class DebateSummary:
    rounds_run: int
    configured_rounds: int
    stop_reason: str
    position_changed: dict[str, bool]
    critiques: tuple[tuple[int, str, Critique], ...]
    round_summaries: tuple[DebateRoundSummary, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "rounds_run": self.rounds_run,
            "configured_rounds": self.configured_rounds,
            "stop_reason": self.stop_reason,
            "position_changed": dict(self.position_changed),
            "critiques": [
                {"round": rnd, "author": author, "target": c.target, "critique": c.critique, "severity": c.severity}
                for rnd, author, c in self.critiques
            ],
            "rounds": [
                {
                    "round": s.round,
                    "responded": s.responded,
                    "position_changes": s.position_changes,
                    "total_critiques": s.total_critiques,
                    "carried_forward": list(s.carried_forward),
                    "stability": s.stability,
                }
                for s in self.round_summaries
            ],
        }


@dataclass(frozen=True)
class ConsultOptions:
    enable_debate: bool = False
    debate_rounds: int = 1
    enable_cache: bool = True
    strategy: str = "weighted"
    enable_escalation: bool = False


@dataclass
class ConsultationResult:
    task: Task
    rounds: list[RoundRecord]
    consensus: ConsensusResult
    agent_statuses: dict[str, str]
    debate_summary: DebateSummary | None = None
    escalated: list[str] = field(default_factory=list)
    cached_agents: list[str] = field(default_factory=list)
    aborted: bool = False
    duration_sec: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": {
                "prompt": self.task.prompt,
                "category": self.task.category,
                "source": self.task.source,
                "has_context": self.task.context is not None,
            },
            "agent_statuses": dict(self.agent_statuses),
            "round_records": [
                {
                    "round": rnd.number,
                    "timestamp": rnd.timestamp,
                    "responses": [r.to_dict() for r in rnd.responses],
                }
                for rnd in self.rounds
            ],
            "consensus": self.consensus.to_dict(),
            "debate_summary": self.debate_summary.to_dict() if self.debate_summary else None,
            "escalated": list(self.escalated),
            "cached_agents": list(self.cached_agents),
            "aborted": self.aborted,
            "duration_sec": self.duration_sec,
        }
