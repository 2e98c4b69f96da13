from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from clarifier.errors import ConversationError, ProviderError, ProviderErrorKind, ValidationError
from clarifier.prompts import Intensity, get_fallback_response, get_meta_prompt, parse_domain, parse_intensity
from clarifier.provider import LLMProvider
from clarifier.providers.common import RetryPolicy, complete_text, retrying
from clarifier.termination import KeywordTerminationPolicy, TerminationPolicy

DEFAULT_CONVERSATION_MODEL = "google/gemini-2.5-flash"

_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class TurnProcessorConfig:
    model: str = DEFAULT_CONVERSATION_MODEL
    max_tokens: int = 500
    temperature: float = 0.7
    max_history_messages: int = 10
    max_message_chars: int = 5000
    retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(attempts=2, base_delay=1.0, multiplier=2.0, max_delay=3.0, timeout=8.0)
    )


@dataclass(frozen=True)
class TurnResult:
    text: str
    suggested_termination: bool
    used_fallback: bool


def sanitize_message(content: str) -> str:
    return content.replace("\x00", "").strip()


def validate_history(history: object) -> list[dict]:
    """Check the history shape and return sanitized copies of its messages.

    Messages that are empty after sanitizing are dropped.
    """
    if not isinstance(history, list):
        raise ValidationError("Conversation history must be a list", "history")
    cleaned: list[dict] = []
    for index, message in enumerate(history):
        if not isinstance(message, dict):
            raise ValidationError(f"History entry {index} must be an object", "history")
        role = message.get("role")
        content = message.get("content")
        if role not in _ROLES:
            raise ValidationError(f"History entry {index} has invalid role: {role!r}", "history")
        if not isinstance(content, str):
            raise ValidationError(f"History entry {index} content must be a string", "history")
        content = sanitize_message(content)
        if content:
            cleaned.append({"role": role, "content": content})
    return cleaned


def trim_history(history: list[dict], max_messages: int) -> list[dict]:
    """Keep only the most recent ``max_messages`` entries."""
    if max_messages <= 0:
        return []
    if len(history) <= max_messages:
        return list(history)
    return list(history[-max_messages:])


class TurnProcessor:
    """Runs one questioning turn: validate, assemble the prompt, call the model."""

    def __init__(
        self,
        provider: LLMProvider,
        config: TurnProcessorConfig | None = None,
        termination_policy: TerminationPolicy | None = None,
    ):
        self._provider = provider
        self._config = config or TurnProcessorConfig()
        self._termination = termination_policy or KeywordTerminationPolicy()

    def validate_message(self, user_message: object) -> str:
        if not isinstance(user_message, str):
            raise ValidationError("Message must be a string", "message")
        message = sanitize_message(user_message)
        if not message:
            raise ValidationError("Message cannot be empty", "message")
        if len(message) > self._config.max_message_chars:
            raise ValidationError(
                f"Message is too long ({len(message)} characters). "
                f"Maximum is {self._config.max_message_chars} characters.",
                "message",
            )
        return message

    async def process(
        self,
        domain: str,
        history: list[dict],
        user_message: str,
        intensity: str | Intensity = Intensity.DEEP,
    ) -> TurnResult:
        resolved_domain = parse_domain(domain)
        resolved_intensity = parse_intensity(intensity)
        message = self.validate_message(user_message)
        cleaned_history = validate_history(history)

        if not self._provider.is_configured():
            logger.error("Conversation turn aborted: provider API key is not configured")
            raise ConversationError(
                "Provider API key is not configured",
                code="MISSING_API_KEY",
                cause=ProviderError("Provider API key is not configured", ProviderErrorKind.MISSING_API_KEY),
            )

        cfg = self._config
        messages = trim_history(cleaned_history, cfg.max_history_messages)
        messages.append({"role": "user", "content": message})
        system_prompt = get_meta_prompt(resolved_domain, resolved_intensity)
        logger.debug(
            f"Turn: domain={resolved_domain.value}, intensity={resolved_intensity.value}, "
            f"history={len(cleaned_history)}, sent={len(messages) - 1}"
        )

        try:
            async for attempt in retrying(cfg.retry, label="Conversation turn"):
                with attempt:
                    text = await complete_text(
                        self._provider,
                        model=cfg.model,
                        max_tokens=cfg.max_tokens,
                        temperature=cfg.temperature,
                        system_prompt=system_prompt,
                        messages=messages,
                        timeout=cfg.retry.timeout,
                    )
        except ProviderError as ex:
            if ex.is_fatal:
                logger.error(f"Conversation turn failed ({ex.code}): {ex}")
                raise ConversationError(str(ex), code=ex.code, cause=ex) from ex
            logger.warning(f"Conversation turn degraded to fallback after {ex.code}: {ex}")
            return TurnResult(
                text=get_fallback_response(resolved_domain),
                suggested_termination=False,
                used_fallback=True,
            )

        return TurnResult(
            text=text,
            suggested_termination=self._termination.suggests_readiness(text),
            used_fallback=False,
        )
