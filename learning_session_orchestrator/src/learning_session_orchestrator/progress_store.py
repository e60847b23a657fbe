"""
Progress Store

Durable key-value store for weekly progress rows keyed by (user_id,
week_number). Upserts merge the given columns into the existing row.

SupabaseProgressStore talks to the weekly_notes table; InMemoryProgressStore
backs tests and local runs without a database.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from learning_session_orchestrator.errors import PersistenceError
from learning_session_orchestrator.progress_record import WeeklyProgressRecord

logger = logging.getLogger(__name__)


class ProgressStore:
    """Interface for weekly progress persistence."""

    async def upsert(self, user_id: str, week_number: int, partial: Dict[str, Any]) -> WeeklyProgressRecord:
        raise NotImplementedError

    async def get(self, user_id: str, week_number: int) -> Optional[WeeklyProgressRecord]:
        raise NotImplementedError

    async def delete(self, user_id: str, week_number: int):
        raise NotImplementedError


class InMemoryProgressStore(ProgressStore):
    """Process-local progress store."""

    def __init__(self):
        self._rows: Dict[Tuple[str, int], Dict[str, Any]] = {}

    async def upsert(self, user_id: str, week_number: int, partial: Dict[str, Any]) -> WeeklyProgressRecord:
        key = (user_id, week_number)
        row = dict(self._rows.get(key, {}))
        row.update(partial)
        row["user_id"] = user_id
        row["week_number"] = week_number
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._rows[key] = row
        return WeeklyProgressRecord.from_row(row)

    async def get(self, user_id: str, week_number: int) -> Optional[WeeklyProgressRecord]:
        row = self._rows.get((user_id, week_number))
        return WeeklyProgressRecord.from_row(row) if row else None

    async def delete(self, user_id: str, week_number: int):
        self._rows.pop((user_id, week_number), None)


class SupabaseProgressStore(ProgressStore):
    """
    Progress store backed by the Supabase weekly_notes table.

    The supabase client is synchronous, so every query runs in a worker
    thread to keep the event loop free. Any client error is raised as
    PersistenceError; nothing falls back to memory.
    """

    def __init__(self, supabase_client, table: str = "weekly_notes"):
        """
        Initialize SupabaseProgressStore.

        Args:
            supabase_client: Supabase client instance
            table: Table holding one row per (user_id, week_number)
        """
        self.supabase = supabase_client
        self.table = table

    async def upsert(self, user_id: str, week_number: int, partial: Dict[str, Any]) -> WeeklyProgressRecord:
        row = {
            **partial,
            "user_id": user_id,
            "week_number": week_number,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        def _upsert():
            return self.supabase.table(self.table) \
                .upsert(row, on_conflict="user_id,week_number") \
                .execute()

        try:
            result = await asyncio.to_thread(_upsert)
        except Exception as e:
            logger.error(f"❌ [ProgressStore] Upsert failed for user {user_id} week {week_number}: {e}")
            raise PersistenceError(f"Failed to save progress: {e}", operation="upsert") from e

        if not result.data:
            raise PersistenceError("Upsert returned no row", operation="upsert")
        return WeeklyProgressRecord.from_row(result.data[0])

    async def get(self, user_id: str, week_number: int) -> Optional[WeeklyProgressRecord]:
        def _select():
            return self.supabase.table(self.table) \
                .select('*') \
                .eq('user_id', user_id) \
                .eq('week_number', week_number) \
                .limit(1) \
                .execute()

        try:
            result = await asyncio.to_thread(_select)
        except Exception as e:
            logger.error(f"❌ [ProgressStore] Load failed for user {user_id} week {week_number}: {e}")
            raise PersistenceError(f"Failed to load progress: {e}", operation="get") from e

        if result.data:
            return WeeklyProgressRecord.from_row(result.data[0])
        return None

    async def delete(self, user_id: str, week_number: int):
        def _delete():
            return self.supabase.table(self.table) \
                .delete() \
                .eq('user_id', user_id) \
                .eq('week_number', week_number) \
                .execute()

        try:
            await asyncio.to_thread(_delete)
        except Exception as e:
            logger.error(f"❌ [ProgressStore] Delete failed for user {user_id} week {week_number}: {e}")
            raise PersistenceError(f"Failed to delete progress: {e}", operation="delete") from e
