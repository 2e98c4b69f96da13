from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionStatus(str, Enum):
    QUESTIONING = "questioning"
    GENERATING = "generating"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: str
    domain: str
    status: SessionStatus
    intensity: str
    final_brief: str | None
    final_output: dict | list | str | None
    generation_claimed_at: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class MessageRecord:
    id: str
    session_id: str
    seq: int
    role: str
    content: str
    question_type: str | None
    created_at: str

    def as_chat_message(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UsageProfile:
    user_id: str
    usage_count: int
    tier: str
    created_at: str
    updated_at: str
