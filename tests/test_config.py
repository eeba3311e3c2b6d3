"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, DebateDefaults, ProviderConfig, load_config
from council.models import AgentRole, DebateMode


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "provider": {
            "name": "google",
            "model": "gemini-test",
            "google_api_key_env": "TEST_GEMINI_KEY",
            "openrouter_api_key_env": "TEST_OPENROUTER_KEY",
            "search_api_key_env": "TEST_SEARCH_KEY",
        },
        "chairperson": {
            "id": "agent-chairperson",
            "name": "The Chairperson",
            "role": "MODERATOR",
            "system_prompt": "You are the Chairperson.",
        },
        "council": [
            {"id": "agent-a", "name": "Aria", "role": "OPTIMIST", "system_prompt": "You are Aria."},
            {
                "id": "agent-b",
                "name": "Cyrus",
                "role": "SKEPTIC",
                "system_prompt": "You are Cyrus.",
                "model_override": "gemini-pro-test",
            },
        ],
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)
    assert isinstance(config.provider, ProviderConfig)


def test_load_config_provider(minimal_settings):
    config = load_config(minimal_settings)
    assert config.provider.name == "google"
    assert config.provider.model == "gemini-test"
    assert config.provider.api_key_env == "TEST_GEMINI_KEY"


def test_load_config_debate_defaults_when_section_missing(minimal_settings):
    config = load_config(minimal_settings)
    assert config.debate == DebateDefaults()
    assert config.debate.transcript_window == 15
    assert config.debate.fallacy_min_chars == 150
    assert config.retry.max_retries == 3
    assert config.retry.initial_backoff_ms == 2000
    assert config.pricing.input_per_1m == 0.075


def test_load_config_agents(minimal_settings):
    config = load_config(minimal_settings)
    assert config.chairperson.role == AgentRole.MODERATOR
    assert [a.id for a in config.council] == ["agent-a", "agent-b"]
    assert config.council[0].model_override is None
    assert config.council[1].model_override == "gemini-pro-test"


def test_load_config_debate_section(tmp_path: Path, minimal_settings):
    raw = yaml.safe_load(minimal_settings.read_text(encoding="utf-8"))
    raw["debate"] = {
        "mode": "fixed",
        "max_rounds": 3,
        "consultation_timeout_sec": None,
        "guest_round_limit": None,
        "output_dir": "./transcripts",
    }
    minimal_settings.write_text(yaml.dump(raw), encoding="utf-8")
    config = load_config(minimal_settings)
    assert config.debate.mode == DebateMode.FIXED
    assert config.debate.max_rounds == 3
    assert config.debate.consultation_timeout_sec is None
    assert config.debate.guest_round_limit is None
    assert isinstance(config.debate.output_dir, Path)


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_GEMINI_KEY", "test-key")
    monkeypatch.delenv("TEST_OPENROUTER_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == {"google"}


def test_load_config_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_GEMINI_KEY", raising=False)
    monkeypatch.delenv("TEST_OPENROUTER_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == set()


def test_load_config_search_available(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_SEARCH_KEY", "pplx-test")
    assert load_config(minimal_settings).search_available is True
    monkeypatch.delenv("TEST_SEARCH_KEY")
    assert load_config(minimal_settings).search_available is False


def test_load_config_unknown_provider(minimal_settings):
    raw = yaml.safe_load(minimal_settings.read_text(encoding="utf-8"))
    raw["provider"]["name"] = "nonexistent"
    minimal_settings.write_text(yaml.dump(raw), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(minimal_settings)


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_shipped_settings_load():
    config = load_config()
    assert config.chairperson.id == "agent-chairperson"
    assert len(config.council) >= 2
