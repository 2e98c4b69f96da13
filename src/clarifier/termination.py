from __future__ import annotations

import re
from typing import Protocol, runtime_checkable


@runtime_checkable
class TerminationPolicy(Protocol):
    def suggests_readiness(self, text: str) -> bool: ...


_DEFAULT_PHRASES = (
    "enough information",
    "enough context",
    "ready to generate",
    "ready to move forward",
    "ready to proceed",
    "shall we proceed",
    "shall we move on",
    "good picture",
    "clear picture",
    "generate ideas now",
)


class KeywordTerminationPolicy:
    """Flags replies in which the assistant signals it has gathered enough context."""

    def __init__(self, phrases: tuple[str, ...] = _DEFAULT_PHRASES):
        self._phrases = tuple(p.lower() for p in phrases if p.strip())

    def suggests_readiness(self, text: str) -> bool:
        if not text:
            return False
        normalized = re.sub(r"\s+", " ", text.lower())
        return any(phrase in normalized for phrase in self._phrases)

