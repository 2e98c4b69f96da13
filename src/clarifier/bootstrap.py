from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from clarifier.app_config import AppConfig, RuntimeEnv
from clarifier.brief_synthesizer import BriefSynthesizer, SynthesisConfig
from clarifier.logging_config import setup_logging
from clarifier.memory import MemoryStore, SessionManager, UsageStore
from clarifier.orchestrator import SessionOrchestrator
from clarifier.output_generator import GenerationConfig, OutputGenerator
from clarifier.provider import LLMProvider, create_provider
from clarifier.rate_limiter import RateLimiter
from clarifier.termination import KeywordTerminationPolicy
from clarifier.turn_processor import TurnProcessor, TurnProcessorConfig


@dataclass
class AppRuntime:
    orchestrator: SessionOrchestrator
    sessions: SessionManager
    rate_limiter: RateLimiter
    memory_store: MemoryStore
    provider: LLMProvider
    log_descriptions: list[str]

    def close(self) -> None:
        self.memory_store.close()


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    provider: LLMProvider | None = None,
    configure_logging: bool = True,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []

    if provider is None:
        provider = create_provider(app.provider_name, env.provider_api_key, base_url=app.base_url)
    if not provider.is_configured():
        # Not fatal here: every pipeline call reports MISSING_API_KEY before touching the network.
        logger.warning(f"{env.provider_env_var} is not set; chat requests will fail with MISSING_API_KEY")

    db_path = Path(app.db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    memory_store = MemoryStore(str(db_path))
    sessions = SessionManager(memory_store)
    rate_limiter = RateLimiter(UsageStore(memory_store), app.tier_limits)

    turn_processor = TurnProcessor(
        provider,
        TurnProcessorConfig(
            model=app.conversation_model,
            max_tokens=app.max_tokens,
            max_history_messages=app.max_history_messages,
        ),
        KeywordTerminationPolicy(),
    )
    synthesizer = BriefSynthesizer(provider, SynthesisConfig(model=app.synthesis_model))
    generator = OutputGenerator(
        provider,
        GenerationConfig(primary_model=app.generation_model, fallback_model=app.generation_fallback_model),
    )
    orchestrator = SessionOrchestrator(
        sessions,
        rate_limiter,
        turn_processor,
        synthesizer,
        generator,
        min_questions=app.min_questions,
        default_intensity=app.default_intensity,
    )
    logger.info(f"Runtime ready: provider={app.provider_name}, db={db_path}")

    return AppRuntime(
        orchestrator=orchestrator,
        sessions=sessions,
        rate_limiter=rate_limiter,
        memory_store=memory_store,
        provider=provider,
        log_descriptions=log_descriptions,
    )
