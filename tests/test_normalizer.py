"""Tests for consultants/normalizer.py."""

import json
import logging

from consultants.models import ResponseStatus
from consultants.normalizer import (
    CONFIDENCE_NOT_PROVIDED,
    UNSTRUCTURED_CAVEAT,
    UNSTRUCTURED_SUMMARY,
    error_response,
    extract_json,
    normalize,
    normalize_debate,
)
from tests.conftest import answer_json, debate_json, make_response, make_spec


def test_extract_json_clean():
    assert extract_json('{"a": 1}') == {"a": 1}


def test_extract_json_code_fence():
    assert extract_json('Here you go:\n```json\n{"a": 1}\n```\nThanks') == {"a": 1}


def test_extract_json_surrounding_chatter():
    assert extract_json('Sure! {"a": {"b": 2}} hope that helps') == {"a": {"b": 2}}


def test_extract_json_none_for_prose():
    assert extract_json("just words") is None
    assert extract_json("   ") is None


def test_conforming_output_passes_through():
    resp = normalize(answer_json("Event-Driven", 9), make_spec("alpha"), 1, persona="The Architect", latency_ms=42)
    assert resp.status is ResponseStatus.OK
    assert resp.agent == "alpha"
    assert resp.persona == "The Architect"
    assert resp.response.approach == "Event-Driven"
    assert resp.response.pros == ("simple",)
    assert resp.confidence.score == 9
    assert resp.metadata.latency_ms == 42
    assert resp.metadata.round_number == 1


def test_fenced_conforming_output_passes_through():
    raw = f"```json\n{answer_json('Monolith', 7)}\n```"
    assert normalize(raw, make_spec(), 1).status is ResponseStatus.OK


def test_prose_is_wrapped_as_degraded(caplog):
    with caplog.at_level(logging.WARNING):
        resp = normalize("I think you should use Kafka.", make_spec("beta"), 1)
    assert resp.status is ResponseStatus.DEGRADED
    assert resp.response.summary == UNSTRUCTURED_SUMMARY
    assert resp.response.detailed == "I think you should use Kafka."
    assert resp.response.approach == "unknown"
    assert UNSTRUCTURED_CAVEAT in resp.response.caveats
    assert resp.confidence.score == 5
    assert resp.confidence.reasoning == CONFIDENCE_NOT_PROVIDED
    assert "beta" in caplog.text


def test_fallback_confidence_is_configurable():
    resp = normalize("prose", make_spec(), 1, fallback_confidence=3)
    assert resp.confidence.score == 3


def test_out_of_range_score_is_non_conforming():
    for bad in (0, 11, 7.5, "high", True):
        raw = json.loads(answer_json())
        raw["confidence"]["score"] = bad
        assert normalize(json.dumps(raw), make_spec(), 1).status is ResponseStatus.DEGRADED, bad


def test_missing_required_field_is_non_conforming():
    raw = json.loads(answer_json())
    del raw["response"]["approach"]
    assert normalize(json.dumps(raw), make_spec(), 1).status is ResponseStatus.DEGRADED


def test_wrapper_json_text_is_unwrapped_into_detailed():
    resp = normalize(json.dumps({"result": "Use Postgres."}), make_spec(), 1)
    assert resp.status is ResponseStatus.DEGRADED
    assert resp.response.detailed == "Use Postgres."


def test_integral_string_score_accepted():
    raw = json.loads(answer_json())
    raw["confidence"]["score"] = "8"
    assert normalize(json.dumps(raw), make_spec(), 1).confidence.score == 8


def test_normalize_debate_full_answer():
    previous = make_response("alpha", approach="Monolith", score=6)
    raw = debate_json(
        "Modular Monolith",
        8,
        position_changed=True,
        critiques=[{"target": "beta", "critique": "too complex", "severity": "SEVERE"}],
        agreement=["needs CI"],
    )
    resp = normalize_debate(raw, make_spec("alpha"), 2, previous=previous)
    assert resp.status is ResponseStatus.OK
    assert resp.response.approach == "Modular Monolith"
    assert resp.debate.position_changed is True
    assert resp.debate.round == 2
    assert resp.debate.critiques[0].severity == "moderate"
    assert resp.debate.areas_of_agreement == ("needs CI",)


def test_normalize_debate_block_only_keeps_previous_answer():
    previous = make_response("alpha", approach="Monolith", score=6)
    raw = json.dumps({"debate": {"position_changed": False, "updated_stance": "same", "confidence_delta": 9}})
    resp = normalize_debate(raw, make_spec("alpha"), 2, previous=previous)
    assert resp.response == previous.response
    assert resp.confidence == previous.confidence
    assert resp.metadata.round_number == 2
    assert resp.debate.confidence_delta == 3


def test_normalize_debate_prose_is_degraded():
    previous = make_response("alpha")
    resp = normalize_debate("I stand by it.", make_spec("alpha"), 2, previous=previous)
    assert resp.status is ResponseStatus.DEGRADED
    assert resp.debate is None


def test_error_response_has_zero_confidence():
    resp = error_response(make_spec("alpha"), 1, ResponseStatus.FAILED, "[alpha] Timeout after 5s", attempts=2)
    assert resp.is_error
    assert resp.confidence.score == 0
    assert resp.error == "[alpha] Timeout after 5s"
    assert resp.metadata.attempts == 2


def test_normalize_debate_tolerates_wrongly_typed_turn_fields():
    previous = make_response("alpha", approach="Monolith", score=6)
    raw = '{"debate": {"position_changed": true, "critiques": 5, "incorporated_from": "beta", "confidence_delta": Infinity}}'
    resp = normalize_debate(raw, make_spec("alpha"), 2, previous=previous)
    assert resp.response == previous.response
    assert resp.debate.position_changed is True
    assert resp.debate.critiques == ()
    assert resp.debate.incorporated_from == ()
    assert resp.debate.confidence_delta == 0
