"""
Orchestrator Configuration

Settings are read from the environment (and a local .env file) the same way
the backend reads its Supabase credentials.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')

DEFAULT_PROGRAM_EPOCH = "2025-01-06T00:00:00+00:00"


def _parse_epoch(value: str) -> datetime:
    epoch = datetime.fromisoformat(value)
    if epoch.tzinfo is None:
        epoch = epoch.replace(tzinfo=timezone.utc)
    return epoch


def _parse_tracks(value: str) -> List[str]:
    return [track.strip() for track in value.split(",") if track.strip()]


@dataclass
class OrchestratorSettings:
    """Runtime settings for the agent session orchestrator."""
    agent_base_url: Optional[str] = None
    agent_api_key: Optional[str] = None
    agent_timeout_seconds: float = 60.0
    cache_ttl_seconds: float = 30.0
    program_epoch: datetime = field(default_factory=lambda: _parse_epoch(DEFAULT_PROGRAM_EPOCH))
    mastery_threshold: float = 0.8
    default_practice_tracks: List[str] = field(default_factory=lambda: ["socratic", "ta"])
    snapshot_dir: str = ".session_snapshots"
    progress_table: str = "weekly_notes"
    max_sessions: int = 1000

    @classmethod
    def from_env(cls) -> "OrchestratorSettings":
        """
        Build settings from environment variables.

        AGENT_BASE_URL and AGENT_API_KEY fall back to the Supabase project URL
        and anon key, since agents are deployed as Supabase edge functions.
        """
        return cls(
            agent_base_url=os.getenv("AGENT_BASE_URL") or os.getenv("SUPABASE_URL"),
            agent_api_key=os.getenv("AGENT_API_KEY") or os.getenv("SUPABASE_ANON_KEY"),
            agent_timeout_seconds=float(os.getenv("AGENT_TIMEOUT_SECONDS", "60")),
            cache_ttl_seconds=float(os.getenv("REQUEST_CACHE_TTL_SECONDS", "30")),
            program_epoch=_parse_epoch(os.getenv("PROGRAM_EPOCH", DEFAULT_PROGRAM_EPOCH)),
            mastery_threshold=float(os.getenv("MASTERY_THRESHOLD", "0.8")),
            default_practice_tracks=_parse_tracks(os.getenv("DEFAULT_PRACTICE_TRACKS", "socratic,ta")),
            snapshot_dir=os.getenv("SNAPSHOT_DIR", ".session_snapshots"),
            progress_table=os.getenv("PROGRESS_TABLE", "weekly_notes"),
            max_sessions=int(os.getenv("MAX_SESSIONS", "1000")),
        )
