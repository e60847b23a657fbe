"""
Progress Recorder

The only writer of WeeklyProgressRecords. Each successful agent result is
merged into the week's record together with its completion flag in a single
upsert, and overall progress is recomputed from the completion map.
"""

import logging
from typing import Any, Dict, Optional

from learning_session_orchestrator.agents import get_agent
from learning_session_orchestrator.progress_record import WeeklyProgressRecord
from learning_session_orchestrator.progress_store import ProgressStore

logger = logging.getLogger(__name__)


class ProgressRecorder:
    """Persists agent outputs and completion into weekly progress records."""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def get(self, user_id: str, week_number: int) -> Optional[WeeklyProgressRecord]:
        """Load the record for a week (None if the week has not started)."""
        return await self.store.get(user_id, week_number)

    async def record(
        self,
        user_id: str,
        week_number: int,
        agent_name: str,
        output: Dict[str, Any],
        completed: bool = True
    ) -> WeeklyProgressRecord:
        """
        Merge an agent's output into the week's record.

        Args:
            user_id: User the output belongs to
            week_number: Program week
            agent_name: Agent that produced the output
            output: Agent payload to store (replaces that agent's previous output)
            completed: Whether this output completes the agent for the week.
                Completion is sticky: a later non-completing output never
                clears a flag that is already set.

        Returns:
            The record as confirmed by the store

        Raises:
            ConfigurationError: Unknown agent identity
            PersistenceError: The store rejected the write
        """
        spec = get_agent(agent_name)
        current = await self.store.get(user_id, week_number)

        completion = dict(current.completion) if current else {}
        if completed:
            completion[agent_name] = True

        merged = WeeklyProgressRecord(
            user_id=user_id,
            week_number=week_number,
            completion=completion,
        )
        partial = {
            spec.output_column: output,
            "completion_status": merged.completion_status(),
        }

        saved = await self.store.upsert(user_id, week_number, partial)
        logger.info(
            f"💾 [ProgressRecorder] {agent_name} saved for user {user_id} week {week_number} "
            f"(completed={saved.is_completed(agent_name)}, progress={saved.overall_progress}%)"
        )
        return saved

    async def mark_completed(self, user_id: str, week_number: int, agent_name: str) -> WeeklyProgressRecord:
        """
        Set an agent's completion flag without touching its output.

        Marking an already-completed agent performs no write.
        """
        get_agent(agent_name)
        current = await self.store.get(user_id, week_number)
        if current is not None and current.is_completed(agent_name):
            return current

        completion = dict(current.completion) if current else {}
        completion[agent_name] = True
        merged = WeeklyProgressRecord(user_id=user_id, week_number=week_number, completion=completion)

        saved = await self.store.upsert(user_id, week_number, {"completion_status": merged.completion_status()})
        logger.info(
            f"✅ [ProgressRecorder] {agent_name} completed for user {user_id} week {week_number} "
            f"(progress={saved.overall_progress}%)"
        )
        return saved

    async def discard_week(self, user_id: str, week_number: int):
        """Delete the whole record for a week (user chose to start over)."""
        await self.store.delete(user_id, week_number)
        logger.info(f"🗑️ [ProgressRecorder] Discarded week {week_number} for user {user_id}")

    async def weekly_intelligence(self, user_id: str, week_number: int) -> Dict[str, Any]:
        """Outputs gathered so far this week, handed to downstream agents."""
        current = await self.store.get(user_id, week_number)
        outputs = current.outputs if current else {}
        return {
            "clo_briefing_note": outputs.get("clo"),
            "socratic_briefing_note": outputs.get("socratic"),
            "lead_engineer_briefing_note": outputs.get("alex"),
        }
