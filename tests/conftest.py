"""
Shared test doubles for the orchestrator test suites.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "learning_session_orchestrator", "src"))

from learning_session_orchestrator.config import OrchestratorSettings
from learning_session_orchestrator.errors import PersistenceError
from learning_session_orchestrator.gateway import AgentResult
from learning_session_orchestrator.progress_recorder import ProgressRecorder
from learning_session_orchestrator.progress_store import InMemoryProgressStore
from learning_session_orchestrator.request_coordinator import RequestCoordinator
from learning_session_orchestrator.session_machine import LearningSession
from learning_session_orchestrator.snapshot_store import InMemorySnapshotStore

EPOCH = datetime(2025, 1, 6, tzinfo=timezone.utc)
# 29 days after the epoch falls in week 5
WEEK_5 = EPOCH + timedelta(days=29)

PLAN = {
    "title": "Async Python",
    "learning_objectives": ["Understand the event loop", "Write coroutines"],
    "daily_tasks": [{"day": 1, "task": "Read about asyncio"}],
}
LESSON = {"title": "Event loops", "day": 1, "required_tracks": ["socratic", "ta"]}


class FakeGateway:
    """Records calls and replays scripted results per agent."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.responses: Dict[str, List[AgentResult]] = {}
        self.gate: Optional[asyncio.Event] = None

    def respond(self, agent_name: str, *results: AgentResult):
        """Queue results; the last one repeats once the queue runs dry."""
        self.responses[agent_name] = list(results)

    async def call(self, agent_name, action, user_id, week_number, payload=None):
        self.calls.append({
            "agent": agent_name,
            "action": action,
            "user_id": user_id,
            "week_number": week_number,
            "payload": payload,
        })
        if self.gate is not None:
            await self.gate.wait()
        queue = self.responses.get(agent_name)
        if not queue:
            return AgentResult.ok({})
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def calls_for(self, agent_name: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["agent"] == agent_name]

    async def aclose(self):
        pass


class WallClock:
    """Settable wall clock for week computations."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


class MonotonicClock:
    """Settable monotonic clock for TTL checks."""

    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


class FlakyProgressStore(InMemoryProgressStore):
    """In-memory store that can be told to fail."""

    def __init__(self):
        super().__init__()
        self.fail_upserts = False
        self.fail_gets = False
        self.fail_deletes = False
        self.upsert_count = 0

    async def upsert(self, user_id, week_number, partial):
        if self.fail_upserts:
            raise PersistenceError("database unavailable", operation="upsert")
        self.upsert_count += 1
        return await super().upsert(user_id, week_number, partial)

    async def get(self, user_id, week_number):
        if self.fail_gets:
            raise PersistenceError("database unavailable", operation="get")
        return await super().get(user_id, week_number)

    async def delete(self, user_id, week_number):
        if self.fail_deletes:
            raise PersistenceError("database unavailable", operation="delete")
        await super().delete(user_id, week_number)


class SessionHarness:
    """Wires a LearningSession with fakes and exposes every collaborator."""

    def __init__(self):
        self.gateway = FakeGateway()
        self.gateway.respond("clo", AgentResult.ok(dict(PLAN)))
        self.gateway.respond("instructor", AgentResult.ok(dict(LESSON)))
        self.clock = WallClock(WEEK_5)
        self.ttl_clock = MonotonicClock()
        self.store = FlakyProgressStore()
        self.snapshots = InMemorySnapshotStore()
        self.settings = OrchestratorSettings(program_epoch=EPOCH)
        self.coordinator = RequestCoordinator(self.gateway, ttl_seconds=30, clock=self.ttl_clock)
        self.recorder = ProgressRecorder(self.store)

    def new_session(self, user_id: str = "user-1") -> LearningSession:
        return LearningSession(
            user_id,
            coordinator=self.coordinator,
            recorder=self.recorder,
            snapshots=self.snapshots,
            settings=self.settings,
            clock=self.clock,
        )

    async def session_in_instruction(self, user_id: str = "user-1") -> LearningSession:
        session = self.new_session(user_id)
        await session.start()
        await session.acknowledge({"goal": "async"})
        await session.approve_plan()
        await session.start_lesson(day=1)
        return session


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def ttl_clock():
    return MonotonicClock()


@pytest.fixture
def harness():
    return SessionHarness()
