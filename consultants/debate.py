"""Debate orchestration: cross-critique rounds after the initial answers.

The controller is a small state machine. After round k resolves it either
moves to round k+1 (k < K and the continuation policy says so) or stops.
Each debate round re-enters the dispatcher and the voting engine; agents
that fail a debate turn keep their previous answer so the panel never
shrinks.
"""

import logging
import random
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from functools import partial

from config.config_loader import AgentSpec, DebateConfig, PromptsConfig
from consultants.adapters.base import AgentAdapter
from consultants.dispatcher import dispatch
from consultants.errors import DebateRoundFailure
from consultants.models import (
    AgentResponse,
    ConsensusResult,
    DebateRoundSummary,
    DebateState,
    DebateStatus,
    DebateSummary,
    ResponseStatus,
    RoundRecord,
    Task,
)
from consultants.normalizer import DEFAULT_FALLBACK_CONFIDENCE, normalize_debate
from consultants.voting import consensus

logger = logging.getLogger(__name__)

STOP_MAX_ROUNDS = "max_rounds_reached"
STOP_CONVERGED = "confidence_converged"
STOP_NO_PARTICIPANTS = "no_participants"

DEBATE_FORMAT = """{
  "debate": {
    "position_changed": true,
    "original_stance": "<your original position>",
    "updated_stance": "<your new position or confirmation of the previous one>",
    "confidence_delta": 0,
    "critiques": [{"target": "<consultant name>", "critique": "<your critique>", "severity": "minor|moderate|major"}],
    "incorporated_from": [{"source": "<consultant name>", "idea": "<what you incorporated>"}],
    "areas_of_agreement": ["<points you agree with others on>"],
    "areas_of_disagreement": ["<points you disagree on>"]
  },
  "response": {
    "summary": "<updated summary>",
    "detailed": "<updated details>",
    "approach": "<updated or confirmed approach>",
    "pros": [],
    "cons": [],
    "caveats": []
  },
  "confidence": {
    "score": 7,
    "reasoning": "<why this confidence level after the debate>",
    "uncertainty_factors": []
  }
}
confidence_delta is an integer from -3 to 3; score is an integer from 1 to 10."""


def _anonymize_responses(
    responses: list[AgentResponse],
) -> tuple[str, dict[str, str]]:
    """Shuffle responses and label them anonymously.

    Returns:
        (anonymized_block, label→agent name mapping)
    """
    shuffled = list(responses)
    random.shuffle(shuffled)
    labels = [f"Response {chr(ord('A') + i)}" for i in range(len(shuffled))]
    parts = [
        f"--- {label} ---\n{r.response.summary}\nApproach: {r.response.approach}"
        for label, r in zip(labels, shuffled)
    ]
    mapping = {label: r.agent for label, r in zip(labels, shuffled)}
    return "\n\n".join(parts), mapping


def _named_peers(responses: list[AgentResponse]) -> str:
    return "\n\n".join(
        f"### {r.agent}\n{r.response.summary}\nApproach: {r.response.approach} "
        f"(confidence {r.confidence.score}/10)"
        for r in responses
    )


def build_debate_prompt(
    template: str,
    task: Task,
    own: AgentResponse,
    peers: list[AgentResponse],
    round_number: int,
    persona: str = "",
    anonymize: bool = False,
) -> str:
    """Prompt for one agent: its own previous answer plus every peer's summary."""
    if anonymize:
        peer_block, label_map = _anonymize_responses(peers)
        logger.debug("Round %d anonymization map for %s: %s", round_number, own.agent, label_map)
    else:
        peer_block = _named_peers(peers)
    return template.format(
        persona=persona,
        round=round_number,
        question=task.prompt,
        previous_round=round_number - 1,
        own_summary=own.response.summary,
        own_approach=own.response.approach,
        own_confidence=own.confidence.score,
        peer_summaries=peer_block or "(no other consultant answered)",
        debate_format=DEBATE_FORMAT,
    )


def should_continue(
    result: ConsensusResult,
    category: str,
    round_number: int,
    max_rounds: int,
    cfg: DebateConfig,
) -> bool:
    """Decide whether round_number + 1 should run.

    A mandatory-debate category always continues (up to max_rounds);
    otherwise the debate continues only while confidence spread exceeds the
    configured threshold.
    """
    if round_number >= max_rounds:
        return False
    if category.upper() in cfg.mandatory_categories:
        return True
    return result.confidence.stddev > cfg.spread_threshold


def _accepted(response: AgentResponse | None) -> bool:
    if response is None or response.is_error:
        return False
    return response.status is ResponseStatus.OK or response.debate is not None


def _accepted_previous(response: AgentResponse | None) -> bool:
    # Error slots carry forward without being asked to debate.
    return response is not None and not response.is_error


class DebateController:
    """Runs rounds 2..K on top of a resolved round 1.

    ``rounds`` is appended to as each round resolves, so a caller that is
    cancelled mid-debate still holds every completed round.
    """

    def __init__(
        self,
        agents: Sequence[AgentSpec],
        adapters: Mapping[str, AgentAdapter],
        prompts: PromptsConfig,
        cfg: DebateConfig,
        *,
        max_rounds: int,
        strategy: str = "weighted",
        personas: Mapping[str, str] | None = None,
        retry_delay_sec: float = 5.0,
        fallback_confidence: int = DEFAULT_FALLBACK_CONFIDENCE,
        on_round_complete: Callable[[RoundRecord, ConsensusResult], None] | None = None,
    ) -> None:
        self._agents = list(agents)
        self._adapters = adapters
        self._prompts = prompts
        self._cfg = cfg
        self._strategy = strategy
        self._personas = dict(personas or {})
        self._retry_delay_sec = retry_delay_sec
        self._fallback_confidence = fallback_confidence
        self._on_round_complete = on_round_complete
        self.state = DebateState(max_rounds=max_rounds)
        self.rounds: list[RoundRecord] = []

    def _finish(self, reason: str) -> None:
        self.state.status = DebateStatus.DONE
        self.state.stop_reason = reason
        logger.info("Debate finished after round %d: %s", self.state.current_round, reason)

    def _parse(self, previous: RoundRecord, raw: str, spec: AgentSpec, round_number: int, **kwargs) -> AgentResponse:
        return normalize_debate(
            raw,
            spec,
            round_number,
            previous=previous.get(spec.name),
            fallback_confidence=self._fallback_confidence,
            **kwargs,
        )

    async def _run_round(self, task: Task, round_number: int) -> RoundRecord:
        previous = self.rounds[-1]
        participants = previous.non_error()
        active = [spec for spec in self._agents if _accepted_previous(previous.get(spec.name))]

        prompts = {
            spec.name: build_debate_prompt(
                self._prompts.debate,
                task,
                previous.get(spec.name),
                [p for p in participants if p.agent != spec.name],
                round_number,
                persona=self._personas.get(spec.name, ""),
                anonymize=self._cfg.anonymize_peers,
            )
            for spec in active
        }
        fresh = await dispatch(
            task,
            active,
            round_number,
            prompts,
            self._adapters,
            parse=partial(self._parse, previous),
            context=task.context,
            retry_delay_sec=self._retry_delay_sec,
        )

        merged: list[AgentResponse] = []
        summary = DebateRoundSummary(round=round_number, responded=0, position_changes=0, total_critiques=0)
        for spec in self._agents:
            prior = previous.get(spec.name)
            candidate = fresh.get(spec.name)
            if not _accepted(candidate):
                if candidate is not None:
                    failure = DebateRoundFailure(
                        spec.name, candidate.error or f"unusable debate turn ({candidate.status.value})"
                    )
                    logger.warning("%s; carrying forward round %d answer", failure, prior.metadata.round_number)
                summary.carried_forward.append(spec.name)
                merged.append(prior)
                continue

            summary.responded += 1
            merged.append(candidate)
            turn = candidate.debate
            if turn is None:
                continue
            if turn.position_changed:
                summary.position_changes += 1
            self.state.position_changed[spec.name] = (
                self.state.position_changed.get(spec.name, False) or turn.position_changed
            )
            summary.total_critiques += len(turn.critiques)
            self.state.critiques.extend((round_number, spec.name, c) for c in turn.critiques)

        self.state.round_summaries.append(summary)
        logger.info(
            "Debate round %d: %d responded, %d changed position, %d critiques (%s)",
            round_number, summary.responded, summary.position_changes, summary.total_critiques, summary.stability,
        )
        return RoundRecord(
            number=round_number,
            responses=tuple(merged),
            timestamp=datetime.now().astimezone().isoformat(timespec="seconds"),
        )

    async def run(self, task: Task, first_round: RoundRecord, first_consensus: ConsensusResult) -> ConsensusResult:
        """Drive the debate from a resolved round 1. Returns the last round's consensus."""
        self.rounds = [first_round]
        self.state.current_round = first_round.number
        latest = first_consensus

        while self.state.status is DebateStatus.AWAITING_ROUND:
            k = self.state.current_round
            if not should_continue(latest, task.category, k, self.state.max_rounds, self._cfg):
                self._finish(STOP_MAX_ROUNDS if k >= self.state.max_rounds else STOP_CONVERGED)
                break
            if not any(_accepted_previous(r) for r in self.rounds[-1].responses):
                self._finish(STOP_NO_PARTICIPANTS)
                break

            record = await self._run_round(task, k + 1)
            self.rounds.append(record)
            self.state.current_round = record.number
            latest = consensus(record, self._strategy)
            if self._on_round_complete:
                self._on_round_complete(record, latest)

        return latest

    def summary(self) -> DebateSummary:
        return DebateSummary(
            rounds_run=len(self.rounds),
            configured_rounds=self.state.max_rounds,
            stop_reason=self.state.stop_reason,
            position_changed=dict(self.state.position_changed),
            critiques=tuple(self.state.critiques),
            round_summaries=tuple(self.state.round_summaries),
        )

