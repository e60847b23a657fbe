"""
Session Orchestrator

Process-wide wiring: one gateway, one request coordinator and one progress
recorder shared by every user's LearningSession.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Optional

from learning_session_orchestrator.config import OrchestratorSettings
from learning_session_orchestrator.gateway import AgentGateway
from learning_session_orchestrator.progress_recorder import ProgressRecorder
from learning_session_orchestrator.progress_store import (
    InMemoryProgressStore,
    ProgressStore,
    SupabaseProgressStore,
)
from learning_session_orchestrator.request_coordinator import RequestCoordinator
from learning_session_orchestrator.session_machine import LearningSession
from learning_session_orchestrator.snapshot_store import FileSnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)


class SessionOrchestrator:
    """
    Creates and keeps one started LearningSession per user.

    At most settings.max_sessions sessions stay in memory; the least recently
    used one is evicted and restored from its snapshot on its next request.
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        recorder: ProgressRecorder,
        snapshots: SnapshotStore,
        settings: Optional[OrchestratorSettings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.coordinator = coordinator
        self.recorder = recorder
        self.snapshots = snapshots
        self.settings = settings or OrchestratorSettings()
        self.clock = clock
        self._sessions: "OrderedDict[str, LearningSession]" = OrderedDict()

    @classmethod
    def from_settings(
        cls,
        settings: OrchestratorSettings,
        supabase_client=None,
        gateway: Optional[AgentGateway] = None
    ) -> "SessionOrchestrator":
        """
        Build the production wiring.

        Progress goes to Supabase when a client is given, otherwise to an
        in-memory store (local development only).
        """
        gateway = gateway or AgentGateway.from_settings(settings)
        if supabase_client is not None:
            store: ProgressStore = SupabaseProgressStore(supabase_client, table=settings.progress_table)
        else:
            logger.warning("⚠️ [SessionOrchestrator] No Supabase client, progress is kept in memory")
            store = InMemoryProgressStore()

        return cls(
            coordinator=RequestCoordinator(gateway, ttl_seconds=settings.cache_ttl_seconds),
            recorder=ProgressRecorder(store),
            snapshots=FileSnapshotStore(settings.snapshot_dir),
            settings=settings,
        )

    async def get_session(self, user_id: str) -> LearningSession:
        """
        Get the user's session, starting (restoring) it on first use.

        Raises:
            PersistenceError: The progress store could not be read on start
        """
        session = self._sessions.get(user_id)
        if session is not None:
            self._sessions.move_to_end(user_id)
            return session

        session = LearningSession(
            user_id,
            coordinator=self.coordinator,
            recorder=self.recorder,
            snapshots=self.snapshots,
            settings=self.settings,
            clock=self.clock,
        )
        await session.start()
        # Another request may have started the same user meanwhile
        session = self._sessions.setdefault(user_id, session)
        self._evict_oldest()
        return session

    def _evict_oldest(self):
        """Evict least recently used sessions while over capacity."""
        while len(self._sessions) > self.settings.max_sessions:
            user_id, _ = self._sessions.popitem(last=False)
            logger.info(f"🧹 [SessionOrchestrator] Evicted idle session for user {user_id}")

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def drop_session(self, user_id: str):
        """Forget the in-memory session (its snapshot stays on disk)."""
        self._sessions.pop(user_id, None)

    async def aclose(self):
        await self.coordinator.gateway.aclose()
