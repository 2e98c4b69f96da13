from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from clarifier.output_generator import DEFAULT_FALLBACK_MODEL, DEFAULT_PRIMARY_MODEL
from clarifier.prompts import Intensity, parse_intensity
from clarifier.rate_limiter import DEFAULT_TIER_LIMITS
from clarifier.turn_processor import DEFAULT_CONVERSATION_MODEL

_PROVIDER_KEY_VARS = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    base_url: str | None
    conversation_model: str
    synthesis_model: str
    generation_model: str
    generation_fallback_model: str | None
    max_tokens: int
    min_questions: int
    max_history_messages: int
    db_path: str
    default_intensity: Intensity
    tier_limits: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TIER_LIMITS))
    log_level: str = "INFO"
    log_consumers: list | None = None
    host: str = "127.0.0.1"
    port: int = 8000


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    provider_name = str(config.get("Provider", "openrouter")).strip().lower()
    if provider_name not in _PROVIDER_KEY_VARS:
        raise ValueError(f"Unsupported Provider {provider_name!r}; expected one of {sorted(_PROVIDER_KEY_VARS)}")

    conversation_model = config.get("ConversationModel", DEFAULT_CONVERSATION_MODEL)
    tier_limits = {str(k).lower(): int(v) for k, v in config.get("TierLimits", DEFAULT_TIER_LIMITS).items()}
    return AppConfig(
        provider_name=provider_name,
        base_url=str(config.get("BaseUrl", "")).strip() or None,
        conversation_model=conversation_model,
        synthesis_model=config.get("SynthesisModel", conversation_model),
        generation_model=config.get("GenerationModel", DEFAULT_PRIMARY_MODEL),
        generation_fallback_model=str(config.get("GenerationFallbackModel", DEFAULT_FALLBACK_MODEL)).strip() or None,
        max_tokens=int(config.get("MaxTokens", 500)),
        min_questions=int(config.get("MinQuestions", 3)),
        max_history_messages=int(config.get("MaxHistoryMessages", 10)),
        db_path=str(config.get("DbPath", ".clarifier/clarifier.db")),
        default_intensity=parse_intensity(config.get("DefaultIntensity", Intensity.DEEP.value)),
        tier_limits=tier_limits,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
        host=config.get("Host", "127.0.0.1"),
        port=int(config.get("Port", 8000)),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    env_var = _PROVIDER_KEY_VARS.get(provider_name, "OPENROUTER_API_KEY")
    return RuntimeEnv(
        provider_api_key=os.environ.get(env_var, ""),
        provider_env_var=env_var,
    )
