from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field

from loguru import logger

from clarifier.errors import GenerationError, ProviderError, ProviderErrorKind, ValidationError
from clarifier.prompts import GENERATION_SYSTEM_PROMPT, get_generation_prompt
from clarifier.provider import LLMProvider
from clarifier.providers.common import RetryPolicy, complete_text, retrying

DEFAULT_PRIMARY_MODEL = "google/gemini-2.0-flash-exp:free"
DEFAULT_FALLBACK_MODEL = "openai/gpt-4o"
MIN_BRIEF_WORDS = 50

_FENCED_JSON = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class GenerationConfig:
    primary_model: str = DEFAULT_PRIMARY_MODEL
    fallback_model: str | None = DEFAULT_FALLBACK_MODEL
    max_tokens: int = 2000
    temperature: float = 0.7
    min_brief_words: int = MIN_BRIEF_WORDS
    retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(attempts=2, base_delay=1.0, multiplier=2.0, timeout=20.0)
    )

    @property
    def models(self) -> list[str]:
        chain = [self.primary_model]
        if self.fallback_model and self.fallback_model != self.primary_model:
            chain.append(self.fallback_model)
        return chain


@dataclass(frozen=True)
class ParsedOutput:
    raw: str
    structured: dict | list | None


@dataclass(frozen=True)
class GenerationResult:
    raw_output: str
    structured_output: dict | list | None
    word_count: int
    model: str
    duration: float


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def parse_structured_output(raw: str) -> ParsedOutput:
    """Best-effort JSON extraction; ``structured`` is None whenever parsing fails."""
    candidates = []
    match = _FENCED_JSON.search(raw or "")
    if match:
        candidates.append(match.group(1))
    candidates.append(raw or "")

    for candidate in candidates:
        candidate = candidate.strip()
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, (dict, list)):
            return ParsedOutput(raw=raw, structured=value)
    logger.debug("Generated output is not structured JSON; keeping raw text")
    return ParsedOutput(raw=raw, structured=None)


def validate_generation_input(domain: object, brief: object, min_words: int = MIN_BRIEF_WORDS) -> None:
    if not isinstance(domain, str) or not domain.strip():
        raise ValidationError("Domain must be a non-empty string", "domain")
    if not isinstance(brief, str) or not brief.strip():
        raise ValidationError("Brief must be a non-empty string", "brief")
    words = count_words(brief)
    if words < min_words:
        raise ValidationError(
            f"Brief is too short ({words} words). Expected at least {min_words} words for quality generation.",
            "brief",
        )


class OutputGenerator:
    """Expands a brief into the final artifact, falling over from the primary model."""

    def __init__(self, provider: LLMProvider, config: GenerationConfig | None = None):
        self._provider = provider
        self._config = config or GenerationConfig()

    @property
    def min_brief_words(self) -> int:
        return self._config.min_brief_words

    async def generate(self, domain: str, brief: str) -> GenerationResult:
        cfg = self._config
        validate_generation_input(domain, brief, cfg.min_brief_words)

        if not self._provider.is_configured():
            raise GenerationError(
                "Provider API key is not configured",
                code="MISSING_API_KEY",
                cause=ProviderError("Provider API key is not configured", ProviderErrorKind.MISSING_API_KEY),
            )

        prompt = get_generation_prompt(domain, brief)
        started = time.monotonic()
        last_error: ProviderError | None = None

        for model in cfg.models:
            logger.info(f"Generating output: domain={domain}, model={model}")
            try:
                async for attempt in retrying(cfg.retry, label=f"Generation ({model})"):
                    with attempt:
                        raw = await complete_text(
                            self._provider,
                            model=model,
                            max_tokens=cfg.max_tokens,
                            temperature=cfg.temperature,
                            system_prompt=GENERATION_SYSTEM_PROMPT,
                            messages=[{"role": "user", "content": prompt}],
                            timeout=cfg.retry.timeout,
                        )
            except ProviderError as ex:
                if ex.is_fatal:
                    # Further attempts would be billed or rejected the same way.
                    logger.error(f"Generation aborted on {model} ({ex.code}): {ex}")
                    raise GenerationError(str(ex), code=ex.code, cause=ex) from ex
                logger.warning(f"Model {model} failed ({ex.code}): {ex}")
                last_error = ex
                continue

            parsed = parse_structured_output(raw)
            result = GenerationResult(
                raw_output=parsed.raw,
                structured_output=parsed.structured,
                word_count=count_words(parsed.raw),
                model=model,
                duration=time.monotonic() - started,
            )
            logger.info(
                f"Output generated: model={model}, words={result.word_count}, "
                f"structured={result.structured_output is not None}, duration={result.duration:.2f}s"
            )
            return result

        timed_out = last_error is not None and last_error.kind == ProviderErrorKind.TIMEOUT
        raise GenerationError(
            f"All models failed to generate output. Last error: {last_error}",
            code="GENERATION_FAILED",
            cause=last_error,
            timed_out=timed_out,
        )
