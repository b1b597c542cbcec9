"""Shared pytest fixtures."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AgentSpec,
    AppConfig,
    CacheConfig,
    DebateConfig,
    DefaultsConfig,
    EscalationConfig,
    PromptsConfig,
    RoutingConfig,
)
from consultants.adapters.base import AdapterOutput, AgentAdapter
from consultants.models import (
    AgentResponse,
    Confidence,
    DebateTurn,
    ResponseBody,
    ResponseMetadata,
    ResponseStatus,
    RoundRecord,
    Task,
)


def make_spec(name: str = "mock", **overrides) -> AgentSpec:
    fields = {
        "adapter": "command",
        "model": f"{name}-model",
        "timeout_sec": 5,
        "max_retries": 0,
        "command": ("echo",),
    }
    fields.update(overrides)
    return AgentSpec(name=name, **fields)


def answer_json(approach: str = "Monolith", score: int = 8, summary: str | None = None, **extra) -> str:
    """Raw agent output that conforms to the response schema."""
    payload = {
        "response": {
            "summary": summary or f"Go with {approach}.",
            "detailed": f"Detailed reasoning for {approach}.",
            "approach": approach,
            "pros": ["simple"],
            "cons": ["limited"],
            "caveats": [],
        },
        "confidence": {
            "score": score,
            "reasoning": "Seen it work before",
            "uncertainty_factors": [],
        },
    }
    payload.update(extra)
    return json.dumps(payload)


def debate_json(
    approach: str = "Monolith",
    score: int = 8,
    position_changed: bool = False,
    critiques: list[dict] | None = None,
    agreement: list[str] | None = None,
    disagreement: list[str] | None = None,
) -> str:
    return answer_json(
        approach,
        score,
        debate={
            "position_changed": position_changed,
            "original_stance": "before",
            "updated_stance": "after",
            "confidence_delta": 1,
            "critiques": critiques or [],
            "incorporated_from": [],
            "areas_of_agreement": agreement or [],
            "areas_of_disagreement": disagreement or [],
        },
    )


def make_response(
    agent: str,
    approach: str = "Monolith",
    score: int = 8,
    status: ResponseStatus = ResponseStatus.OK,
    round_number: int = 1,
    debate: DebateTurn | None = None,
    error: str | None = None,
) -> AgentResponse:
    return AgentResponse(
        agent=agent,
        model=f"{agent}-model",
        status=status,
        response=ResponseBody(summary=f"{agent} says {approach}", detailed="...", approach=approach),
        confidence=Confidence(score=score, reasoning="because"),
        metadata=ResponseMetadata(round_number=round_number, latency_ms=10),
        debate=debate,
        error=error,
    )


def make_round(*responses: AgentResponse, number: int = 1) -> RoundRecord:
    return RoundRecord(number=number, responses=tuple(responses))


class MockAdapter(AgentAdapter):
    """Test double adapter. ``invoke`` is an AsyncMock so tests can script it."""

    def __init__(self, spec: AgentSpec, raw: str | list[str] = "") -> None:
        super().__init__(spec)
        if isinstance(raw, list):
            side_effect = [AdapterOutput(raw=r) if isinstance(r, str) else r for r in raw]
            self.invoke = AsyncMock(side_effect=side_effect)  # type: ignore[method-assign]
        else:
            self.invoke = AsyncMock(return_value=AdapterOutput(raw=raw))  # type: ignore[method-assign]

    async def invoke(self, prompt: str, context: str | None, timeout: float) -> AdapterOutput:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return AdapterOutput(raw="")


@pytest.fixture
def prompts_config() -> PromptsConfig:
    return PromptsConfig(
        initial="{persona}\n{output_format}\nQuestion: {question}",
        debate=(
            "{persona}\nRound {round} (previous {previous_round}). Question: {question}\n"
            "You said: {own_summary} [{own_approach}, {own_confidence}/10]\n"
            "Others:\n{peer_summaries}\n{debate_format}"
        ),
        output_format="Answer in JSON.",
        personas={"alpha": 'You are "The Architect".', "beta": 'You are "The Pragmatist".'},
    )


@pytest.fixture
def app_config(tmp_path: Path, prompts_config: PromptsConfig) -> AppConfig:
    return AppConfig(
        defaults=DefaultsConfig(
            retry_delay_sec=0,
            output_dir=tmp_path / "output",
            default_panel=("alpha", "beta"),
        ),
        agents={"alpha": make_spec("alpha"), "beta": make_spec("beta")},
        prompts=prompts_config,
        cache=CacheConfig(dir=tmp_path / "cache"),
        debate=DebateConfig(spread_threshold=2.0, mandatory_categories=frozenset({"SECURITY"})),
        escalation=EscalationConfig(enabled=True, confidence_threshold=5),
        routing=RoutingConfig(),
        available_agents=frozenset({"alpha", "beta"}),
    )


@pytest.fixture
def sample_task() -> Task:
    return Task(prompt="Should we split the monolith?", category="ARCHITECTURE")
