"""
Snapshot Store

Local mirror of each user's session state. Snapshots only speed up resume;
the progress store stays the source of truth, so read and write problems are
logged and treated as "no snapshot".
"""

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from learning_session_orchestrator.session_state import Phase, SessionSnapshot
from learning_session_orchestrator.week import is_snapshot_valid

logger = logging.getLogger(__name__)


def snapshot_to_dict(snapshot: SessionSnapshot) -> Dict[str, Any]:
    """Convert a snapshot to a JSON-serializable dictionary."""
    return {
        "phase": snapshot.phase.value,
        "last_loaded_week": snapshot.last_loaded_week,
        "plan_summary": snapshot.plan_summary,
        "lesson_summary": snapshot.lesson_summary,
        "active_track": snapshot.active_track,
        "completed_tracks": list(snapshot.completed_tracks),
        "required_tracks": list(snapshot.required_tracks),
        "practice_turns": snapshot.practice_turns,
        "practice_attempt": snapshot.practice_attempt,
        "saved_at": snapshot.saved_at.isoformat(),
    }


def dict_to_snapshot(data: Dict[str, Any]) -> SessionSnapshot:
    """
    Convert a stored dictionary back into a snapshot.

    Raises:
        ValueError: Unknown phase or malformed timestamp
        KeyError: Missing phase
    """
    snapshot = SessionSnapshot(
        phase=Phase(data["phase"]),
        last_loaded_week=data.get("last_loaded_week"),
        plan_summary=data.get("plan_summary"),
        lesson_summary=data.get("lesson_summary"),
        active_track=data.get("active_track"),
        completed_tracks=list(data.get("completed_tracks") or []),
        required_tracks=list(data.get("required_tracks") or []),
        practice_turns=int(data.get("practice_turns") or 0),
        practice_attempt=int(data.get("practice_attempt") or 0),
    )
    if data.get("saved_at"):
        snapshot.saved_at = datetime.fromisoformat(data["saved_at"])
    return snapshot


def restore_snapshot(snapshot: Optional[SessionSnapshot], current_week: int) -> Optional[SessionSnapshot]:
    """
    Decide whether a persisted snapshot may be resumed.

    Returns the snapshot when it was taken in the current week, None when
    there is nothing to restore or the snapshot is stale.
    """
    if snapshot is None:
        return None
    if not is_snapshot_valid(snapshot.last_loaded_week, current_week):
        logger.info(
            f"📅 [SnapshotStore] Discarding snapshot from week {snapshot.last_loaded_week} "
            f"(current week {current_week})"
        )
        return None
    return snapshot


class SnapshotStore:
    """Interface for local session snapshots."""

    def save(self, user_id: str, snapshot: SessionSnapshot):
        raise NotImplementedError

    def load(self, user_id: str) -> Optional[SessionSnapshot]:
        raise NotImplementedError

    def clear(self, user_id: str):
        raise NotImplementedError


class InMemorySnapshotStore(SnapshotStore):
    """Snapshots kept in process memory (stored serialized, like on disk)."""

    def __init__(self):
        self._snapshots: Dict[str, Dict[str, Any]] = {}

    def save(self, user_id: str, snapshot: SessionSnapshot):
        self._snapshots[user_id] = snapshot_to_dict(snapshot)

    def load(self, user_id: str) -> Optional[SessionSnapshot]:
        data = self._snapshots.get(user_id)
        return dict_to_snapshot(data) if data else None

    def clear(self, user_id: str):
        self._snapshots.pop(user_id, None)


class FileSnapshotStore(SnapshotStore):
    """One JSON file per user under a local directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path_for(self, user_id: str) -> Path:
        digest = hashlib.md5(user_id.encode()).hexdigest()
        return self.directory / f"{digest}.json"

    def save(self, user_id: str, snapshot: SessionSnapshot):
        path = self._path_for(user_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(snapshot_to_dict(snapshot)), encoding="utf-8")
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ [SnapshotStore] Could not save snapshot for user {user_id}: {e}")

    def load(self, user_id: str) -> Optional[SessionSnapshot]:
        path = self._path_for(user_id)
        if not path.exists():
            return None
        try:
            return dict_to_snapshot(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"⚠️ [SnapshotStore] Ignoring unreadable snapshot for user {user_id}: {e}")
            return None

    def clear(self, user_id: str):
        try:
            self._path_for(user_id).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"⚠️ [SnapshotStore] Could not clear snapshot for user {user_id}: {e}")
