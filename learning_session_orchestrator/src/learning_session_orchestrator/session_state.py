"""
Session State Data Model

Phase enumeration and the serializable snapshot of a learning session.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Phase(Enum):
    """Learning phases of a weekly session."""
    ONBOARDING = "onboarding"
    PLAN_REVIEW = "plan_review"
    INSTRUCTION = "instruction"
    PRACTICE = "practice"
    COMPLETE = "complete"


@dataclass
class SessionSnapshot:
    """Externally visible session state, mirrored locally for fast resume."""
    phase: Phase = Phase.ONBOARDING
    last_loaded_week: Optional[int] = None
    plan_summary: Optional[Dict[str, Any]] = None
    lesson_summary: Optional[Dict[str, Any]] = None
    # Practice progress within the current lesson
    active_track: Optional[str] = None
    completed_tracks: List[str] = field(default_factory=list)
    required_tracks: List[str] = field(default_factory=list)
    practice_turns: int = 0
    # Incremented on every track entry
    practice_attempt: int = 0
    saved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
