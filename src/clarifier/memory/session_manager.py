from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from loguru import logger

from clarifier.errors import HistoryRetrievalError, StoreError
from clarifier.memory.models import MessageRecord, SessionRecord, SessionStatus
from clarifier.memory.store import MemoryStore, utc_now

# Longer than the slowest full synthesis plus generation run, including retries.
GENERATION_CLAIM_TTL_SECONDS = 300


@contextmanager
def _store_errors(action: str, error_type: type[StoreError] = StoreError) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as ex:
        logger.error(f"Store failure while trying to {action}: {ex}")
        raise error_type(f"Failed to {action}: {ex}") from ex


def _row_to_session(row: sqlite3.Row) -> SessionRecord:
    output_json = row["final_output_json"]
    return SessionRecord(
        id=row["id"],
        user_id=row["user_id"],
        domain=row["domain"],
        status=SessionStatus(row["status"]),
        intensity=row["intensity"],
        final_brief=row["final_brief"],
        final_output=json.loads(output_json) if output_json is not None else None,
        generation_claimed_at=row["generation_claimed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        session_id=row["session_id"],
        seq=int(row["seq"]),
        role=row["role"],
        content=row["content"],
        question_type=row["question_type"],
        created_at=row["created_at"],
    )


class SessionManager:
    """Sessions and their append-only message log.

    Status only moves forward. The move into ``generating`` is a
    compare-and-set so two generation requests for one session cannot both
    proceed.
    """

    def __init__(self, store: MemoryStore):
        self._store = store

    def create_session(self, user_id: str, domain: str, intensity: str = "deep") -> SessionRecord:
        sid = str(uuid4())
        now = utc_now()
        with _store_errors("create session"), self._store.transaction():
            self._store.execute(
                """
                INSERT INTO sessions (id, user_id, domain, status, intensity, created_at, updated_at)
                VALUES (?, ?, ?, 'questioning', ?, ?, ?)
                """,
                (sid, user_id, domain, intensity, now, now),
            )
        logger.info(f"Session created: id={sid}, domain={domain}, intensity={intensity}")
        return SessionRecord(
            id=sid,
            user_id=user_id,
            domain=domain,
            status=SessionStatus.QUESTIONING,
            intensity=intensity,
            final_brief=None,
            final_output=None,
            generation_claimed_at=None,
            created_at=now,
            updated_at=now,
        )

    def get_session(self, session_id: str) -> SessionRecord | None:
        with _store_errors("load session"):
            row = self._store.execute(
                "SELECT * FROM sessions WHERE id = ? LIMIT 1",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_session(row)

    def update_intensity(self, session_id: str, intensity: str) -> None:
        with _store_errors("update intensity"), self._store.transaction():
            self._store.execute(
                "UPDATE sessions SET intensity = ?, updated_at = ? WHERE id = ?",
                (intensity, utc_now(), session_id),
            )

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        question_type: str | None = None,
    ) -> MessageRecord:
        message_id = str(uuid4())
        now = utc_now()
        with _store_errors("save message"), self._store.transaction():
            row = self._store.execute(
                "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            next_seq = int(row["max_seq"]) + 1
            self._store.execute(
                """
                INSERT INTO messages (id, session_id, seq, role, content, question_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (message_id, session_id, next_seq, role, content, question_type, now),
            )
            self._store.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (now, session_id),
            )
        return MessageRecord(
            id=message_id,
            session_id=session_id,
            seq=next_seq,
            role=role,
            content=content,
            question_type=question_type,
            created_at=now,
        )

    def load_messages(self, session_id: str) -> list[MessageRecord]:
        with _store_errors("load conversation history", HistoryRetrievalError):
            rows = self._store.execute(
                """
                SELECT id, session_id, seq, role, content, question_type, created_at
                FROM messages
                WHERE session_id = ?
                ORDER BY seq ASC
                """,
                (session_id,),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def claim_generation(self, session_id: str, ttl_seconds: float = GENERATION_CLAIM_TTL_SECONDS) -> bool:
        """Atomically move the session into ``generating`` and take the claim.

        Succeeds from ``questioning``, or from ``generating`` when an earlier
        attempt released its claim or its claim is older than ``ttl_seconds``
        (the holder crashed). Returns False when another request holds it.
        """
        now = utc_now()
        stale_before = utc_now(-ttl_seconds)
        with _store_errors("start generation"), self._store.transaction():
            cursor = self._store.execute(
                """
                UPDATE sessions
                SET status = 'generating', generation_claimed_at = ?, updated_at = ?
                WHERE id = ?
                  AND (status = 'questioning'
                       OR (status = 'generating'
                           AND (generation_claimed_at IS NULL OR generation_claimed_at < ?)))
                """,
                (now, now, session_id, stale_before),
            )
            claimed = cursor.rowcount == 1
        if claimed:
            logger.info(f"Generation claimed: session={session_id}")
        return claimed

    def release_generation_claim(self, session_id: str) -> None:
        with _store_errors("release generation claim"), self._store.transaction():
            self._store.execute(
                """
                UPDATE sessions SET generation_claimed_at = NULL, updated_at = ?
                WHERE id = ? AND status = 'generating'
                """,
                (utc_now(), session_id),
            )
        logger.info(f"Generation claim released: session={session_id}")

    def set_final_brief(self, session_id: str, brief: str) -> None:
        with _store_errors("save brief"), self._store.transaction():
            cursor = self._store.execute(
                """
                UPDATE sessions SET final_brief = ?, updated_at = ?
                WHERE id = ? AND status = 'generating'
                """,
                (brief, utc_now(), session_id),
            )
            if cursor.rowcount != 1:
                raise StoreError(f"Session {session_id} is not generating; brief not saved")

    def complete_session(self, session_id: str, final_output: dict | list | str) -> None:
        with _store_errors("save generated output"), self._store.transaction():
            cursor = self._store.execute(
                """
                UPDATE sessions
                SET status = 'completed', final_output_json = ?, generation_claimed_at = NULL, updated_at = ?
                WHERE id = ? AND status = 'generating'
                """,
                (json.dumps(final_output, ensure_ascii=True), utc_now(), session_id),
            )
            if cursor.rowcount != 1:
                raise StoreError(f"Session {session_id} is not generating; output not saved")
        logger.info(f"Session completed: id={session_id}")
