from __future__ import annotations

import sqlite3

from clarifier.errors import StoreError
from clarifier.memory.models import UsageProfile
from clarifier.memory.store import MemoryStore, utc_now


def _row_to_profile(row: sqlite3.Row) -> UsageProfile:
    return UsageProfile(
        user_id=row["user_id"],
        usage_count=int(row["usage_count"]),
        tier=row["tier"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UsageStore:
    def __init__(self, store: MemoryStore):
        self._store = store

    def get_profile(self, user_id: str) -> UsageProfile | None:
        """Return the profile, or None when the user has none yet."""
        try:
            row = self._store.execute(
                "SELECT * FROM usage_profiles WHERE user_id = ? LIMIT 1",
                (user_id,),
            ).fetchone()
        except sqlite3.Error as ex:
            raise StoreError(f"Failed to load usage profile: {ex}") from ex
        return _row_to_profile(row) if row is not None else None

    def create_profile(self, user_id: str, tier: str = "free") -> UsageProfile:
        """Create a zero-usage profile; a concurrent creator wins silently."""
        now = utc_now()
        try:
            with self._store.transaction():
                self._store.execute(
                    """
                    INSERT OR IGNORE INTO usage_profiles (user_id, usage_count, tier, created_at, updated_at)
                    VALUES (?, 0, ?, ?, ?)
                    """,
                    (user_id, tier, now, now),
                )
                row = self._store.execute(
                    "SELECT * FROM usage_profiles WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as ex:
            raise StoreError(f"Failed to create usage profile: {ex}") from ex
        return _row_to_profile(row)

    def increment(self, user_id: str, tier: str = "free") -> UsageProfile:
        """Add one to the usage counter in a single statement.

        A missing profile is created with ``usage_count = 1``.
        """
        now = utc_now()
        try:
            with self._store.transaction():
                self._store.execute(
                    """
                    INSERT INTO usage_profiles (user_id, usage_count, tier, created_at, updated_at)
                    VALUES (?, 1, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        usage_count = usage_count + 1,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, tier, now, now),
                )
                row = self._store.execute(
                    "SELECT * FROM usage_profiles WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as ex:
            raise StoreError(f"Failed to increment usage: {ex}") from ex
        return _row_to_profile(row)
