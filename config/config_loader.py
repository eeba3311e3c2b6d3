"""Load settings.yaml into typed dataclasses. Resolves API keys from the environment."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from council.models import Agent, AgentRole, DebateMode

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

PROVIDERS = ("google", "openrouter")


@dataclass
class ProviderConfig:
    name: str                      # "google" or "openrouter"
    model: str
    google_api_key_env: str = "GEMINI_API_KEY"
    openrouter_api_key_env: str = "OPENROUTER_API_KEY"
    search_api_key_env: str = "PERPLEXITY_API_KEY"
    temperature: float = 0.7
    timeout_sec: int = 120
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    @property
    def api_key_env(self) -> str:
        return self.google_api_key_env if self.name == "google" else self.openrouter_api_key_env


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_backoff_ms: int = 2000


@dataclass
class PricingConfig:
    input_per_1m: float = 0.075
    output_per_1m: float = 0.30
    search_grounding_request: float = 0.035
    search_augmentation_request: float = 0.005


@dataclass
class DebateDefaults:
    mode: DebateMode = DebateMode.AUTO
    max_rounds: int = 2
    vote_delay_sec: float = 1.0
    consultation_timeout_sec: float | None = 10.0
    transcript_window: int = 15
    fallacy_min_chars: int = 150
    guest_round_limit: int | None = 2
    conclude_after_round: int = 5
    output_dir: Path = Path("./output")


@dataclass
class AppConfig:
    provider: ProviderConfig
    retry: RetryConfig
    pricing: PricingConfig
    debate: DebateDefaults
    chairperson: Agent
    council: list[Agent] = field(default_factory=list)
    available_providers: set[str] = field(default_factory=set)
    search_available: bool = False


def _parse_agent(raw: dict) -> Agent:
    return Agent(
        id=str(raw["id"]),
        name=str(raw["name"]),
        role=AgentRole(raw.get("role", "REALIST")),
        system_prompt=str(raw["system_prompt"]),
        description=str(raw.get("description", "")),
        model_override=raw.get("model_override"),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError on an unknown
    provider name. Logs which providers have API keys but does not raise;
    callers check available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    provider_raw = raw["provider"]
    provider = ProviderConfig(
        name=str(provider_raw["name"]),
        model=str(provider_raw["model"]),
        google_api_key_env=provider_raw.get("google_api_key_env", "GEMINI_API_KEY"),
        openrouter_api_key_env=provider_raw.get("openrouter_api_key_env", "OPENROUTER_API_KEY"),
        search_api_key_env=provider_raw.get("search_api_key_env", "PERPLEXITY_API_KEY"),
        temperature=float(provider_raw.get("temperature", 0.7)),
        timeout_sec=int(provider_raw.get("timeout_sec", 120)),
        openrouter_base_url=provider_raw.get("openrouter_base_url", "https://openrouter.ai/api/v1"),
    )
    if provider.name not in PROVIDERS:
        raise ValueError(f"Unknown provider '{provider.name}', expected one of {PROVIDERS}")

    retry_raw = raw.get("retry", {})
    retry = RetryConfig(
        max_retries=int(retry_raw.get("max_retries", 3)),
        initial_backoff_ms=int(retry_raw.get("initial_backoff_ms", 2000)),
    )

    pricing_raw = raw.get("pricing", {})
    pricing = PricingConfig(**{k: float(v) for k, v in pricing_raw.items()})

    debate_raw = raw.get("debate", {})
    consultation_timeout = debate_raw.get("consultation_timeout_sec", 10.0)
    guest_round_limit = debate_raw.get("guest_round_limit", 2)
    debate = DebateDefaults(
        mode=DebateMode(str(debate_raw.get("mode", "AUTO")).upper()),
        max_rounds=int(debate_raw.get("max_rounds", 2)),
        vote_delay_sec=float(debate_raw.get("vote_delay_sec", 1.0)),
        consultation_timeout_sec=float(consultation_timeout) if consultation_timeout is not None else None,
        transcript_window=int(debate_raw.get("transcript_window", 15)),
        fallacy_min_chars=int(debate_raw.get("fallacy_min_chars", 150)),
        guest_round_limit=int(guest_round_limit) if guest_round_limit is not None else None,
        conclude_after_round=int(debate_raw.get("conclude_after_round", 5)),
        output_dir=Path(debate_raw.get("output_dir", "./output")),
    )

    chairperson = _parse_agent(raw["chairperson"])
    council = [_parse_agent(a) for a in raw.get("council", [])]

    available_providers: set[str] = set()
    for name, env in (("google", provider.google_api_key_env), ("openrouter", provider.openrouter_api_key_env)):
        if os.environ.get(env, "").strip():
            available_providers.add(name)
            logger.info("Provider available: %s", name)
        else:
            logger.info("Provider skipped (no API key): %s; set %s in .env", name, env)

    search_available = bool(os.environ.get(provider.search_api_key_env, "").strip())
    if search_available:
        logger.info("Search augmentation available via %s", provider.search_api_key_env)

    return AppConfig(
        provider=provider,
        retry=retry,
        pricing=pricing,
        debate=debate,
        chairperson=chairperson,
        council=council,
        available_providers=available_providers,
        search_available=search_available,
    )
