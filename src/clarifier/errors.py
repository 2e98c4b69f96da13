from __future__ import annotations

from enum import Enum


class ClarifierError(Exception):
    """Base error carrying a stable code and the HTTP status it maps to."""

    code = "INTERNAL_ERROR"
    http_status = 500
    user_message = "Something went wrong. Please try again in a moment."

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
        user_message: str | None = None,
    ):
        super().__init__(message)
        if code is not None:
            self.code = code
        if user_message is not None:
            self.user_message = user_message
        self.details = details

    def to_payload(self) -> dict:
        payload: dict = {"error": str(self), "code": self.code, "message": self.user_message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ClarifierError):
    code = "VALIDATION_ERROR"
    http_status = 400
    user_message = "Invalid request - please check your input and try again."

    def __init__(self, message: str, field: str, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field


class AuthenticationError(ClarifierError):
    code = "AUTHENTICATION_REQUIRED"
    http_status = 401
    user_message = "Please log in to continue."


class NotFoundError(ClarifierError):
    code = "NOT_FOUND"
    http_status = 404
    user_message = "Session not found - please start a new conversation."


class SessionStateError(ClarifierError):
    """The session exists but its status does not allow the request."""

    http_status = 400
    user_message = "This session cannot accept that request right now."


class RateLimitError(ClarifierError):
    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429
    user_message = "Upgrade to Pro for unlimited sessions"

    def __init__(self, message: str, *, remaining: int, limit: int, tier: str, **kwargs):
        super().__init__(message, **kwargs)
        self.remaining = remaining
        self.limit = limit
        self.tier = tier

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload.update({"remaining": self.remaining, "limit": self.limit, "tier": self.tier})
        return payload


class GenerationTimeoutError(ClarifierError):
    code = "GENERATION_TIMEOUT"
    http_status = 408
    user_message = "Generation is taking longer than expected. Please try again with a shorter conversation."


class StoreError(ClarifierError):
    code = "STORE_ERROR"
    user_message = "We could not save your progress. Please try again."


class HistoryRetrievalError(StoreError):
    code = "HISTORY_RETRIEVAL_ERROR"
    user_message = "We could not load this conversation. Please try again."


class InternalError(ClarifierError):
    code = "INTERNAL_ERROR"


class ProviderErrorKind(str, Enum):
    MISSING_API_KEY = "missing_api_key"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    BAD_REQUEST = "bad_request"
    EMPTY_RESPONSE = "empty_response"


_RETRYABLE_KINDS = {
    ProviderErrorKind.TIMEOUT,
    ProviderErrorKind.NETWORK,
    ProviderErrorKind.SERVER,
    ProviderErrorKind.EMPTY_RESPONSE,
}

_PROVIDER_CODES = {
    ProviderErrorKind.MISSING_API_KEY: "MISSING_API_KEY",
    ProviderErrorKind.AUTH: "AUTH_ERROR",
    ProviderErrorKind.RATE_LIMIT: "RATE_LIMIT_ERROR",
    ProviderErrorKind.TIMEOUT: "PROVIDER_TIMEOUT",
    ProviderErrorKind.NETWORK: "NETWORK_ERROR",
    ProviderErrorKind.SERVER: "PROVIDER_UNAVAILABLE",
    ProviderErrorKind.BAD_REQUEST: "API_ERROR",
    ProviderErrorKind.EMPTY_RESPONSE: "EMPTY_RESPONSE",
}


class ProviderError(ClarifierError):
    """A classified failure reported by an LLM provider adapter."""

    user_message = "The AI service is temporarily unavailable. Please try again in a moment."

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message, code=_PROVIDER_CODES[kind])
        self.kind = kind
        self.status_code = status_code
        self.retryable = kind in _RETRYABLE_KINDS if retryable is None else retryable

    @property
    def is_fatal(self) -> bool:
        return self.kind in (
            ProviderErrorKind.MISSING_API_KEY,
            ProviderErrorKind.AUTH,
            ProviderErrorKind.RATE_LIMIT,
        )


# Upstream capacity problems; the request can succeed later unchanged.
_UNAVAILABLE_CODES = {"RATE_LIMIT_ERROR", "PROVIDER_UNAVAILABLE"}


class _PipelineError(ClarifierError):
    def __init__(self, message: str, *, code: str, cause: Exception | None = None, timed_out: bool = False):
        super().__init__(message, code=code)
        self.cause = cause
        self.timed_out = timed_out
        if code in _UNAVAILABLE_CODES:
            self.http_status = 503


class ConversationError(_PipelineError):
    user_message = "We could not continue the conversation. Please try again."


class SynthesisError(_PipelineError):
    user_message = "We could not summarize your conversation. Please try generating again."


class GenerationError(_PipelineError):
    user_message = "Failed to generate ideas. Please try again or contact support if the issue persists."

