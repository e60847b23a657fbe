"""
Weekly Progress Record

Per-user, per-week record of agent outputs and completion flags, mapped onto
the weekly_notes table layout (one output column per agent plus a
completion_status object).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from learning_session_orchestrator.agents import AGENTS


def compute_overall_progress(completion: Dict[str, bool]) -> int:
    """overall_progress = round(100 * completed / total known agents)."""
    completed = sum(1 for name in AGENTS if completion.get(name))
    return round(100 * completed / len(AGENTS))


@dataclass
class WeeklyProgressRecord:
    """Durable progress for one user and one program week."""
    user_id: str
    week_number: int
    outputs: Dict[str, Any] = field(default_factory=dict)  # agent name -> last output payload
    completion: Dict[str, bool] = field(default_factory=dict)  # agent name -> completed
    updated_at: Optional[datetime] = None

    @property
    def overall_progress(self) -> int:
        # Always derived from the completion map
        return compute_overall_progress(self.completion)

    @property
    def completed_agents(self) -> int:
        return sum(1 for name in AGENTS if self.completion.get(name))

    def is_completed(self, agent_name: str) -> bool:
        return bool(self.completion.get(agent_name))

    def output_for(self, agent_name: str) -> Optional[Dict[str, Any]]:
        return self.outputs.get(agent_name)

    def completion_status(self) -> Dict[str, Any]:
        """completion_status column value, including the convenience progress cache."""
        status: Dict[str, Any] = {
            spec.completion_field: bool(self.completion.get(name))
            for name, spec in AGENTS.items()
        }
        status["overall_progress"] = self.overall_progress
        return status

    def to_row(self) -> Dict[str, Any]:
        """Convert to a weekly_notes row."""
        row: Dict[str, Any] = {
            "user_id": self.user_id,
            "week_number": self.week_number,
            "completion_status": self.completion_status(),
        }
        for name, output in self.outputs.items():
            row[AGENTS[name].output_column] = output
        if self.updated_at:
            row["updated_at"] = self.updated_at.isoformat()
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "WeeklyProgressRecord":
        """Build a record from a weekly_notes row. Unknown columns are ignored."""
        status = row.get("completion_status") or {}
        outputs = {}
        completion = {}
        for name, spec in AGENTS.items():
            if row.get(spec.output_column) is not None:
                outputs[name] = row[spec.output_column]
            completion[name] = bool(status.get(spec.completion_field, False))

        updated_at = row.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))

        return cls(
            user_id=row["user_id"],
            week_number=int(row["week_number"]),
            outputs=outputs,
            completion=completion,
            updated_at=updated_at,
        )
