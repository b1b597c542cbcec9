"""Load settings.yaml into typed, frozen dataclasses. Resolves agent availability at startup."""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

TIERS = ("economy", "standard", "premium")


@dataclass(frozen=True)
class AgentSpec:
    name: str
    adapter: str               # "command", "anthropic", "openai", "gemini"
    model: str
    tier: str = "standard"
    timeout_sec: float = 180
    max_retries: int = 1
    api_key_env: str | None = None
    base_url: str | None = None
    command: tuple[str, ...] = ()
    max_tokens: int = 4096
    escalation_model: str | None = None


@dataclass(frozen=True)
class PromptsConfig:
    initial: str
    debate: str
    output_format: str = ""
    personas: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DefaultsConfig:
    enable_debate: bool = False
    debate_rounds: int = 1
    strategy: str = "weighted"
    retry_delay_sec: float = 5.0
    min_agents: int = 2
    fallback_confidence: int = 5
    output_dir: Path = Path("./output")
    default_panel: tuple[str, ...] = ()


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = True
    dir: Path = Path("/tmp/ai_consultants_cache")
    ttl_hours: float = 24

    @property
    def ttl_sec(self) -> float:
        return self.ttl_hours * 3600


@dataclass(frozen=True)
class DebateConfig:
    spread_threshold: float = 2.0
    mandatory_categories: frozenset[str] = frozenset()
    anonymize_peers: bool = False


@dataclass(frozen=True)
class EscalationConfig:
    enabled: bool = False
    confidence_threshold: int = 5


@dataclass(frozen=True)
class RoutingConfig:
    enabled: bool = False
    min_affinity: int = 7
    max_agents: int = 8
    default_affinity: int = 5
    modes: dict[str, str] = field(default_factory=dict)
    category_timeouts: dict[str, float] = field(default_factory=dict)
    affinity: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class AppConfig:
    defaults: DefaultsConfig
    agents: dict[str, AgentSpec]
    prompts: PromptsConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    debate: DebateConfig = field(default_factory=DebateConfig)
    escalation: EscalationConfig = field(default_factory=EscalationConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    available_agents: frozenset[str] = frozenset()


def _parse_agent(name: str, raw: dict) -> AgentSpec:
    tier = str(raw.get("tier", "standard")).lower()
    if tier not in TIERS:
        raise ValueError(f"Agent '{name}': unknown tier '{tier}' (expected one of {', '.join(TIERS)})")
    return AgentSpec(
        name=name,
        adapter=str(raw["adapter"]),
        model=str(raw.get("model", "")),
        tier=tier,
        timeout_sec=float(raw.get("timeout_sec", 180)),
        max_retries=int(raw.get("max_retries", 1)),
        api_key_env=raw.get("api_key_env"),
        base_url=raw.get("base_url"),
        command=tuple(str(part) for part in raw.get("command", [])),
        max_tokens=int(raw.get("max_tokens", 4096)),
        escalation_model=raw.get("escalation_model"),
    )


def is_available(spec: AgentSpec) -> bool:
    """An HTTP agent needs its API key set; a command agent needs its binary on PATH."""
    if spec.adapter == "command":
        return bool(spec.command) and shutil.which(spec.command[0]) is not None
    if not spec.api_key_env:
        return False
    return bool(os.environ.get(spec.api_key_env, "").strip())


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs unavailable agents but does not raise; callers check
    available_agents count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw.get("defaults", {})
    defaults = DefaultsConfig(
        enable_debate=bool(defaults_raw.get("enable_debate", False)),
        debate_rounds=int(defaults_raw.get("debate_rounds", 1)),
        strategy=str(defaults_raw.get("strategy", "weighted")),
        retry_delay_sec=float(defaults_raw.get("retry_delay_sec", 5)),
        min_agents=int(defaults_raw.get("min_agents", 2)),
        fallback_confidence=int(defaults_raw.get("fallback_confidence", 5)),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        default_panel=tuple(defaults_raw.get("default_panel", [])),
    )

    prompts_raw = raw["prompts"]
    personas_raw = raw.get("personas", {})
    prompts = PromptsConfig(
        initial=prompts_raw["initial"],
        debate=prompts_raw["debate"],
        output_format=prompts_raw.get("output_format", ""),
        personas={k: str(v) for k, v in personas_raw.items()},
    )

    cache_raw = raw.get("cache", {})
    cache = CacheConfig(
        enabled=bool(cache_raw.get("enabled", True)),
        dir=Path(cache_raw.get("dir", "/tmp/ai_consultants_cache")),
        ttl_hours=float(cache_raw.get("ttl_hours", 24)),
    )

    debate_raw = raw.get("debate", {})
    debate = DebateConfig(
        spread_threshold=float(debate_raw.get("spread_threshold", 2.0)),
        mandatory_categories=frozenset(c.upper() for c in debate_raw.get("mandatory_categories", [])),
        anonymize_peers=bool(debate_raw.get("anonymize_peers", False)),
    )

    escalation_raw = raw.get("escalation", {})
    escalation = EscalationConfig(
        enabled=bool(escalation_raw.get("enabled", False)),
        confidence_threshold=int(escalation_raw.get("confidence_threshold", 5)),
    )

    routing_raw = raw.get("routing", {})
    routing = RoutingConfig(
        enabled=bool(routing_raw.get("enabled", False)),
        min_affinity=int(routing_raw.get("min_affinity", 7)),
        max_agents=int(routing_raw.get("max_agents", 8)),
        default_affinity=int(routing_raw.get("default_affinity", 5)),
        modes={k.upper(): str(v) for k, v in routing_raw.get("modes", {}).items()},
        category_timeouts={k.upper(): float(v) for k, v in routing_raw.get("category_timeouts", {}).items()},
        affinity={
            category.upper(): {agent: int(score) for agent, score in scores.items()}
            for category, scores in routing_raw.get("affinity", {}).items()
        },
    )

    agents: dict[str, AgentSpec] = {}
    available: set[str] = set()

    for agent_name, agent_raw in raw["agents"].items():
        spec = _parse_agent(agent_name, agent_raw)
        agents[agent_name] = spec
        if is_available(spec):
            available.add(agent_name)
            logger.info("Agent available: %s", agent_name)
        elif spec.adapter == "command":
            logger.info("Agent skipped (command not found): %s — %s", agent_name, spec.command[:1])
        else:
            logger.info(
                "Agent skipped (no API key): %s — set %s in .env",
                agent_name,
                spec.api_key_env,
            )

    return AppConfig(
        defaults=defaults,
        agents=agents,
        prompts=prompts,
        cache=cache,
        debate=debate,
        escalation=escalation,
        routing=routing,
        available_agents=frozenset(available),
    )
