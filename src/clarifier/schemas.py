"""Request and response shapes for the chat endpoint.

Loosely-typed payloads are checked once here; everything downstream works
with the parsed dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from clarifier.errors import ValidationError
from clarifier.prompts import Domain, Intensity, parse_domain, parse_intensity

MAX_REQUEST_MESSAGE_CHARS = 10000


@dataclass(frozen=True)
class ChatRequest:
    message: str
    session_id: str | None = None
    domain: Domain | None = None
    generate_now: bool = False
    intensity: Intensity | None = None


@dataclass(frozen=True)
class ChatResponse:
    session_id: str
    response_message: str
    is_completed: bool
    status: str
    question_count: int | None = None
    can_generate: bool | None = None
    suggested_termination: bool | None = None
    final_output: dict | None = None

    def to_dict(self) -> dict:
        payload: dict = {
            "sessionId": self.session_id,
            "responseMessage": self.response_message,
            "isCompleted": self.is_completed,
            "status": self.status,
        }
        if self.question_count is not None:
            payload["questionCount"] = self.question_count
        if self.can_generate is not None:
            payload["canGenerate"] = self.can_generate
        if self.suggested_termination is not None:
            payload["suggestedTermination"] = self.suggested_termination
        if self.final_output is not None:
            payload["finalOutput"] = self.final_output
        return payload


def _parse_session_id(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("sessionId must be a string", "sessionId")
    try:
        return str(UUID(value))
    except ValueError as ex:
        raise ValidationError(f"Invalid sessionId: {value}", "sessionId") from ex


def _parse_message(value: object) -> str:
    if not isinstance(value, str):
        raise ValidationError("message is required and must be a string", "message")
    if not value.strip():
        raise ValidationError("Message cannot be empty", "message")
    if len(value) > MAX_REQUEST_MESSAGE_CHARS:
        raise ValidationError(
            f"Message must be at most {MAX_REQUEST_MESSAGE_CHARS} characters",
            "message",
        )
    return value


def parse_chat_request(payload: object) -> ChatRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", "body")

    generate_now = payload.get("generateNow", False)
    if generate_now is None:
        generate_now = False
    if not isinstance(generate_now, bool):
        raise ValidationError("generateNow must be a boolean", "generateNow")

    domain = payload.get("domain")
    intensity = payload.get("intensity")
    return ChatRequest(
        message=_parse_message(payload.get("message")),
        session_id=_parse_session_id(payload.get("sessionId")),
        domain=parse_domain(domain) if domain is not None else None,
        generate_now=generate_now,
        intensity=parse_intensity(intensity) if intensity is not None else None,
    )
