from __future__ import annotations

import time
from dataclasses import dataclass, field

from loguru import logger

from clarifier.errors import ProviderError, ProviderErrorKind, SynthesisError, ValidationError
from clarifier.prompts import SYNTHESIS_SYSTEM_PROMPT, build_synthesis_prompt
from clarifier.provider import LLMProvider
from clarifier.providers.common import RetryPolicy, complete_text, retrying
from clarifier.turn_processor import DEFAULT_CONVERSATION_MODEL, validate_history

EMPTY_HISTORY_PLACEHOLDER = "(No conversation history)"

# Transient failures worth another attempt; everything else fails fast.
SYNTHESIS_RETRY_KINDS = frozenset(
    {
        ProviderErrorKind.TIMEOUT,
        ProviderErrorKind.NETWORK,
        ProviderErrorKind.RATE_LIMIT,
        ProviderErrorKind.SERVER,
        ProviderErrorKind.EMPTY_RESPONSE,
    }
)


@dataclass(frozen=True)
class SynthesisConfig:
    model: str = DEFAULT_CONVERSATION_MODEL
    max_tokens: int = 1000
    temperature: float = 0.3
    max_history_entries: int = 50
    retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(attempts=3, base_delay=1.0, multiplier=2.0, timeout=6.0)
    )


@dataclass(frozen=True)
class SynthesisResult:
    brief: str
    duration: float
    word_count: int


def format_conversation_history(history: list[dict], max_entries: int = 50) -> str:
    if not history:
        return EMPTY_HISTORY_PLACEHOLDER
    recent = history[-max_entries:] if max_entries > 0 else []
    lines = []
    for message in recent:
        speaker = "User" if message["role"] == "user" else "Assistant"
        lines.append(f"{speaker}: {message['content']}")
    return "\n\n".join(lines)


class BriefSynthesizer:
    """Condenses a whole conversation into one structured brief.

    Never invents a brief: if the model cannot be reached after the retry
    budget, a SynthesisError is raised and generation must not proceed.
    """

    def __init__(self, provider: LLMProvider, config: SynthesisConfig | None = None):
        self._provider = provider
        self._config = config or SynthesisConfig()

    async def synthesize(self, domain: str, history: list[dict]) -> str:
        if not isinstance(domain, str) or not domain.strip():
            raise ValidationError("Domain is required for brief synthesis", "domain")
        cleaned = validate_history(history)

        if not self._provider.is_configured():
            raise SynthesisError(
                "Provider API key is not configured",
                code="MISSING_API_KEY",
                cause=ProviderError("Provider API key is not configured", ProviderErrorKind.MISSING_API_KEY),
            )

        cfg = self._config
        prompt = build_synthesis_prompt(domain, format_conversation_history(cleaned, cfg.max_history_entries))
        logger.info(f"Synthesizing brief: domain={domain}, messages={len(cleaned)}")

        try:
            async for attempt in retrying(cfg.retry, label="Brief synthesis", retry_kinds=SYNTHESIS_RETRY_KINDS):
                with attempt:
                    brief = await complete_text(
                        self._provider,
                        model=cfg.model,
                        max_tokens=cfg.max_tokens,
                        temperature=cfg.temperature,
                        system_prompt=SYNTHESIS_SYSTEM_PROMPT,
                        messages=[{"role": "user", "content": prompt}],
                        timeout=cfg.retry.timeout,
                    )
        except ProviderError as ex:
            if ex.kind in SYNTHESIS_RETRY_KINDS:
                logger.error(f"Brief synthesis failed after {cfg.retry.attempts} attempts: {ex}")
                raise SynthesisError(
                    f"Failed to synthesize brief after {cfg.retry.attempts} attempts: {ex}",
                    code="SYNTHESIS_FAILED",
                    cause=ex,
                    timed_out=ex.kind == ProviderErrorKind.TIMEOUT,
                ) from ex
            logger.error(f"Brief synthesis failed ({ex.code}): {ex}")
            raise SynthesisError(str(ex), code=ex.code, cause=ex) from ex

        logger.info(f"Brief synthesized: words={len(brief.split())}")
        return brief

    async def synthesize_with_metadata(self, domain: str, history: list[dict]) -> SynthesisResult:
        started = time.monotonic()
        brief = await self.synthesize(domain, history)
        return SynthesisResult(
            brief=brief,
            duration=time.monotonic() - started,
            word_count=len(brief.split()),
        )
