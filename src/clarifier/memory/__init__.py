from clarifier.memory.models import MessageRecord, SessionRecord, SessionStatus, UsageProfile
from clarifier.memory.session_manager import SessionManager
from clarifier.memory.store import MemoryStore
from clarifier.memory.usage_store import UsageStore

__all__ = [
    "MemoryStore",
    "MessageRecord",
    "SessionManager",
    "SessionRecord",
    "SessionStatus",
    "UsageProfile",
    "UsageStore",
]
