"""Validate raw agent output against the response schema; wrap anything else.

Agents are asked for JSON, but real output arrives wrapped in code fences,
prefixed with chatter, or as plain prose. ``normalize`` guarantees every
downstream consumer sees one uniform AgentResponse shape:

- conforming JSON passes through as status ``ok``;
- anything else becomes status ``degraded`` with the raw text kept verbatim
  in ``detailed``, approach ``unknown`` and a fixed fallback confidence.
"""

import json
import logging
import re
from dataclasses import replace
from datetime import datetime
from typing import Any

from config.config_loader import AgentSpec
from consultants.errors import AgentMalformedResponse
from consultants.models import (
    AgentResponse,
    Confidence,
    Critique,
    DebateTurn,
    ResponseBody,
    ResponseMetadata,
    ResponseStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_CONFIDENCE = 5
UNSTRUCTURED_SUMMARY = "Unstructured response - see detailed"
UNSTRUCTURED_CAVEAT = "Unstructured output from consultant"
CONFIDENCE_NOT_PROVIDED = "Confidence not provided by consultant"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_SEVERITIES = ("minor", "moderate", "major")


def extract_json(text: str) -> dict | list | None:
    """Extract JSON from agent output, handling common formatting issues.

    Tries in order:
      1. Direct json.loads (clean output)
      2. Strip markdown code fences (```json ... ```)
      3. Find the first { and parse through the last }
    """
    if not text or not text.strip():
        return None

    text = text.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fence_match = _FENCE_PATTERN.search(text)
    if fence_match:
        try:
            return json.loads(fence_match.group(1).strip())
        except json.JSONDecodeError:
            pass

    start_idx = text.find("{")
    end_idx = text.rfind("}")
    if start_idx != -1 and end_idx > start_idx:
        try:
            return json.loads(text[start_idx : end_idx + 1])
        except json.JSONDecodeError:
            pass

    return None


def _now() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if v is not None)


def _score(value: Any) -> int | None:
    """Accept ints and integral floats/strings in [1, 10]; anything else is non-conforming."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number.is_integer() or not 1 <= number <= 10:
        return None
    return int(number)


def _parse_body(data: dict) -> tuple[ResponseBody, Confidence] | None:
    """Return (body, confidence) when data conforms to the response schema, else None."""
    body = data.get("response")
    conf = data.get("confidence")
    if not isinstance(body, dict) or not isinstance(conf, dict):
        return None
    for key in ("summary", "detailed", "approach"):
        if not isinstance(body.get(key), str) or not body[key].strip():
            return None
    if not isinstance(conf.get("reasoning"), str):
        return None
    score = _score(conf.get("score"))
    if score is None:
        return None
    return (
        ResponseBody(
            summary=body["summary"],
            detailed=body["detailed"],
            approach=body["approach"].strip(),
            pros=_str_tuple(body.get("pros")),
            cons=_str_tuple(body.get("cons")),
            caveats=_str_tuple(body.get("caveats")),
        ),
        Confidence(
            score=score,
            reasoning=conf["reasoning"],
            uncertainty_factors=_str_tuple(conf.get("uncertainty_factors")),
        ),
    )


def _unstructured_text(raw: str, data: Any) -> str:
    """Best-effort content for `detailed` when the output is JSON but not our schema."""
    if isinstance(data, dict):
        for key in ("response", "output", "message", "result", "text"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return raw


def normalize(
    raw: str,
    spec: AgentSpec,
    round_number: int,
    *,
    persona: str = "",
    latency_ms: int = 0,
    tokens_used: int | None = None,
    attempts: int = 1,
    fallback_confidence: int = DEFAULT_FALLBACK_CONFIDENCE,
) -> AgentResponse:
    """Turn raw adapter output into an AgentResponse. Never raises on malformed input."""
    metadata = ResponseMetadata(
        round_number=round_number,
        latency_ms=latency_ms,
        tokens_used=tokens_used,
        timestamp=_now(),
        attempts=attempts,
    )
    data = extract_json(raw)
    parsed = _parse_body(data) if isinstance(data, dict) else None

    if parsed is not None:
        body, confidence = parsed
        return AgentResponse(
            agent=spec.name,
            model=spec.model,
            persona=persona,
            status=ResponseStatus.OK,
            response=body,
            confidence=confidence,
            metadata=metadata,
        )

    malformed = AgentMalformedResponse(spec.name, f"non-standard output in round {round_number}")
    logger.warning("%s, wrapping as degraded response", malformed)
    return AgentResponse(
        agent=spec.name,
        model=spec.model,
        persona=persona,
        status=ResponseStatus.DEGRADED,
        response=ResponseBody(
            summary=UNSTRUCTURED_SUMMARY,
            detailed=_unstructured_text(raw, data),
            approach="unknown",
            caveats=(UNSTRUCTURED_CAVEAT,),
        ),
        confidence=Confidence(
            score=fallback_confidence,
            reasoning=CONFIDENCE_NOT_PROVIDED,
            uncertainty_factors=("Non-standard response format",),
        ),
        metadata=metadata,
    )


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _parse_debate_turn(raw_turn: Any, round_number: int) -> DebateTurn | None:
    if not isinstance(raw_turn, dict) or "position_changed" not in raw_turn:
        return None
    critiques = []
    for item in _list(raw_turn.get("critiques")):
        if not isinstance(item, dict) or not item.get("critique"):
            continue
        severity = str(item.get("severity", "moderate")).lower()
        critiques.append(
            Critique(
                target=str(item.get("target", "")),
                critique=str(item["critique"]),
                severity=severity if severity in _SEVERITIES else "moderate",
            )
        )
    incorporated = tuple(
        (str(item.get("source", "")), str(item.get("idea", "")))
        for item in _list(raw_turn.get("incorporated_from"))
        if isinstance(item, dict)
    )
    try:
        delta = int(raw_turn.get("confidence_delta", 0))
    except (TypeError, ValueError, OverflowError):
        delta = 0
    return DebateTurn(
        round=round_number,
        position_changed=bool(raw_turn.get("position_changed")),
        original_stance=str(raw_turn.get("original_stance", "")),
        updated_stance=str(raw_turn.get("updated_stance", "")),
        confidence_delta=max(-3, min(3, delta)),
        critiques=tuple(critiques),
        incorporated_from=incorporated,
        areas_of_agreement=_str_tuple(raw_turn.get("areas_of_agreement")),
        areas_of_disagreement=_str_tuple(raw_turn.get("areas_of_disagreement")),
    )


def normalize_debate(
    raw: str,
    spec: AgentSpec,
    round_number: int,
    *,
    previous: AgentResponse,
    persona: str = "",
    latency_ms: int = 0,
    tokens_used: int | None = None,
    attempts: int = 1,
    fallback_confidence: int = DEFAULT_FALLBACK_CONFIDENCE,
) -> AgentResponse:
    """Parse a debate turn and merge it over the agent's previous response.

    A conforming revised response replaces the base fields; a debate block
    without one keeps the previous base fields. Output with neither comes
    back as a degraded response, which the debate controller rejects.
    """
    persona = persona or previous.persona
    data = extract_json(raw)
    if not isinstance(data, dict):
        return normalize(
            raw, spec, round_number,
            persona=persona,
            latency_ms=latency_ms,
            tokens_used=tokens_used,
            attempts=attempts,
            fallback_confidence=fallback_confidence,
        )

    turn = _parse_debate_turn(data.get("debate"), round_number)
    parsed = _parse_body(data)
    metadata = ResponseMetadata(
        round_number=round_number,
        latency_ms=latency_ms,
        tokens_used=tokens_used,
        timestamp=_now(),
        attempts=attempts,
    )

    if parsed is not None:
        body, confidence = parsed
        return AgentResponse(
            agent=spec.name,
            model=spec.model,
            persona=persona,
            status=ResponseStatus.OK,
            response=body,
            confidence=confidence,
            metadata=metadata,
            debate=turn,
        )
    if turn is not None:
        return replace(previous, metadata=metadata, debate=turn)

    return normalize(
        raw, spec, round_number,
        persona=persona,
        latency_ms=latency_ms,
        tokens_used=tokens_used,
        attempts=attempts,
        fallback_confidence=fallback_confidence,
    )


def error_response(
    spec: AgentSpec,
    round_number: int,
    status: ResponseStatus,
    error: str,
    *,
    persona: str = "",
    latency_ms: int = 0,
    attempts: int = 1,
) -> AgentResponse:
    """Synthetic response for an agent that produced nothing usable. Confidence is always 0."""
    return AgentResponse(
        agent=spec.name,
        model=spec.model,
        persona=persona,
        status=status,
        response=ResponseBody(summary="", detailed="", approach="unknown"),
        confidence=Confidence(score=0, reasoning=error),
        metadata=ResponseMetadata(
            round_number=round_number,
            latency_ms=latency_ms,
            timestamp=_now(),
            attempts=attempts,
        ),
        error=error,
    )
