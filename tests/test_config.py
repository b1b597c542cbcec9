"""Tests for config/config_loader.py."""

import sys
from pathlib import Path

import pytest
import yaml

from config.config_loader import AgentSpec, AppConfig, PromptsConfig, is_available, load_config


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "defaults": {
            "debate_rounds": 3,
            "strategy": "majority",
            "retry_delay_sec": 2,
            "output_dir": "./output",
            "default_panel": ["claude", "local"],
        },
        "agents": {
            "claude": {
                "adapter": "anthropic",
                "model": "claude-sonnet-4-5",
                "tier": "standard",
                "api_key_env": "TEST_CLAUDE_KEY",
                "timeout_sec": 120,
                "max_retries": 2,
                "escalation_model": "claude-opus-4-1",
            },
            "local": {
                "adapter": "command",
                "model": "python",
                "command": [sys.executable, "-c", "print('hi')"],
            },
        },
        "cache": {"dir": str(tmp_path / "cache"), "ttl_hours": 2},
        "debate": {"mandatory_categories": ["security"], "spread_threshold": 1.5},
        "routing": {
            "modes": {"quick_syntax": "single"},
            "category_timeouts": {"quick_syntax": 60},
            "affinity": {"security": {"claude": 9}},
        },
        "prompts": {
            "initial": "{persona}\n{output_format}\n{question}",
            "debate": "{persona}\nRound {round}\n{question}",
            "output_format": "JSON please",
        },
        "personas": {
            "claude": 'You are "The Integrator".',
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.debate_rounds == 3
    assert config.defaults.strategy == "majority"
    assert config.defaults.retry_delay_sec == 2.0
    assert config.defaults.min_agents == 2
    assert config.defaults.fallback_confidence == 5
    assert config.defaults.default_panel == ("claude", "local")
    assert isinstance(config.defaults.output_dir, Path)


def test_load_config_agents(minimal_settings):
    config = load_config(minimal_settings)
    claude = config.agents["claude"]
    assert isinstance(claude, AgentSpec)
    assert claude.timeout_sec == 120
    assert claude.max_retries == 2
    assert claude.escalation_model == "claude-opus-4-1"
    assert claude.base_url is None
    assert config.agents["local"].command[0] == sys.executable


def test_load_config_is_immutable(minimal_settings):
    config = load_config(minimal_settings)
    with pytest.raises(AttributeError):
        config.agents["claude"].timeout_sec = 1  # type: ignore[misc]


def test_load_config_sections(minimal_settings, tmp_path):
    config = load_config(minimal_settings)
    assert config.cache.dir == tmp_path / "cache"
    assert config.cache.ttl_sec == 2 * 3600
    assert config.debate.mandatory_categories == frozenset({"SECURITY"})
    assert config.debate.spread_threshold == 1.5
    assert config.routing.modes == {"QUICK_SYNTAX": "single"}
    assert config.routing.category_timeouts == {"QUICK_SYNTAX": 60.0}
    assert config.routing.affinity == {"SECURITY": {"claude": 9}}
    assert config.escalation.enabled is False


def test_load_config_prompts(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert "{question}" in config.prompts.initial
    assert config.prompts.output_format == "JSON please"
    assert "The Integrator" in config.prompts.personas["claude"]


def test_load_config_available_agents_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    config = load_config(minimal_settings)
    assert config.available_agents == frozenset({"claude", "local"})


def test_load_config_unavailable_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_CLAUDE_KEY", raising=False)
    config = load_config(minimal_settings)
    assert "claude" not in config.available_agents
    assert "local" in config.available_agents


def test_command_agent_unavailable_when_binary_missing():
    spec = AgentSpec(name="ghost", adapter="command", model="x", command=("definitely-not-a-real-binary-xyz",))
    assert is_available(spec) is False


def test_load_config_rejects_unknown_tier(minimal_settings):
    raw = yaml.safe_load(minimal_settings.read_text(encoding="utf-8"))
    raw["agents"]["claude"]["tier"] = "platinum"
    minimal_settings.write_text(yaml.dump(raw), encoding="utf-8")
    with pytest.raises(ValueError, match="unknown tier"):
        load_config(minimal_settings)


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_bundled_settings_load(monkeypatch):
    """The shipped settings.yaml parses and its prompts format cleanly."""
    config = load_config()
    assert {"gemini", "codex", "claude", "grok"} <= set(config.agents)
    prompt = config.prompts.initial.format(persona="P", output_format=config.prompts.output_format, question="Q?")
    assert '"confidence"' in prompt
    assert "Q?" in prompt
