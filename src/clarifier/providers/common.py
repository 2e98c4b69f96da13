from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from clarifier.errors import ProviderError, ProviderErrorKind
from clarifier.provider import LLMProvider

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float | None = None
    timeout: float | None = None


def _make_on_retry(label: str, attempts: int) -> Callable:
    def _on_retry(retry_state) -> None:
        attempt = retry_state.attempt_number
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reason = f"{type(exc).__name__}: {exc}" if exc else "Unknown"
        logger.warning(f"{label}: {reason}. Retrying in {wait:.1f}s (attempt {attempt}/{attempts})...")

    return _on_retry


def retrying(
    policy: RetryPolicy,
    *,
    label: str,
    retry_kinds: Iterable[ProviderErrorKind] | None = None,
) -> AsyncRetrying:
    """Build a tenacity controller for a provider call.

    Only ProviderErrors are ever retried. By default the error's own
    ``retryable`` flag decides; ``retry_kinds`` overrides it with an explicit set.
    """
    kinds = frozenset(retry_kinds) if retry_kinds is not None else None

    def _should_retry(exc: BaseException) -> bool:
        if not isinstance(exc, ProviderError):
            return False
        if kinds is not None:
            return exc.kind in kinds
        return exc.retryable

    # tenacity: wait = multiplier * exp_base ** (attempt - 1), clamped to max.
    wait_kwargs: dict = {"multiplier": policy.base_delay, "exp_base": policy.multiplier, "min": 0}
    if policy.max_delay is not None:
        wait_kwargs["max"] = policy.max_delay

    return AsyncRetrying(
        retry=retry_if_exception(_should_retry),
        wait=wait_exponential(**wait_kwargs),
        stop=stop_after_attempt(max(1, policy.attempts)),
        before_sleep=_make_on_retry(label, policy.attempts),
        reraise=True,
    )


async def with_timeout(call: Awaitable[T], timeout: float | None) -> T:
    if timeout is None or timeout <= 0:
        return await call
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as ex:
        raise ProviderError(
            f"Provider call exceeded {timeout:g}s",
            ProviderErrorKind.TIMEOUT,
        ) from ex


async def complete_text(
    provider: LLMProvider,
    *,
    model: str,
    max_tokens: int,
    temperature: float,
    system_prompt: str,
    messages: list[dict],
    timeout: float | None,
) -> str:
    """One provider attempt: enforce the timeout and treat blank replies as failures."""
    text = await with_timeout(
        provider.create_message(model, max_tokens, temperature, system_prompt, messages),
        timeout,
    )
    text = (text or "").strip()
    if not text:
        raise ProviderError("LLM returned empty response", ProviderErrorKind.EMPTY_RESPONSE)
    return text


def status_to_kind(status_code: int | None) -> ProviderErrorKind:
    if status_code in (401, 403):
        return ProviderErrorKind.AUTH
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMIT
    if status_code == 408:
        return ProviderErrorKind.TIMEOUT
    if status_code is not None and status_code >= 500:
        return ProviderErrorKind.SERVER
    return ProviderErrorKind.BAD_REQUEST
