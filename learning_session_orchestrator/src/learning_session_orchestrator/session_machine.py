"""
Learning Session State Machine

Drives one user's weekly session through its phases:

    ONBOARDING -> PLAN_REVIEW -> INSTRUCTION <-> PRACTICE
                                     |
                                     v
                                 COMPLETE

Agent calls go through the shared RequestCoordinator, results are persisted
by the ProgressRecorder, and every transition is mirrored to the
SnapshotStore. A phase only changes after the call that triggers it has
resolved successfully; failures leave the user where they were with an
error on the returned ActionOutcome.

Every entry point first checks the computed week number. When the week has
moved on, the session drops its state and restarts at ONBOARDING for the new
week.
"""

import dataclasses
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from learning_session_orchestrator.agents import PRACTICE_TRACKS, get_agent
from learning_session_orchestrator.config import OrchestratorSettings
from learning_session_orchestrator.errors import (
    InvalidTransitionError,
    OrchestratorError,
    PersistenceError,
)
from learning_session_orchestrator.gateway import AgentResult
from learning_session_orchestrator.plan_parser import flatten_plan, summarize_lesson, summarize_plan
from learning_session_orchestrator.progress_record import WeeklyProgressRecord
from learning_session_orchestrator.progress_recorder import ProgressRecorder
from learning_session_orchestrator.request_coordinator import RequestCoordinator
from learning_session_orchestrator.session_state import Phase, SessionSnapshot
from learning_session_orchestrator.snapshot_store import SnapshotStore, restore_snapshot
from learning_session_orchestrator.week import compute_week_number

logger = logging.getLogger(__name__)

STALE_RESULT_ERROR = "The session changed while the request was running"


@dataclass
class ActionOutcome:
    """Result of a session action as seen by the caller."""
    success: bool
    phase: Phase
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class LearningSession:
    """
    Phase state machine for one user's weekly learning session.

    Call start() once before any other action; it restores a same-week
    snapshot or loads the week's progress record.
    """

    def __init__(
        self,
        user_id: str,
        coordinator: RequestCoordinator,
        recorder: ProgressRecorder,
        snapshots: SnapshotStore,
        settings: Optional[OrchestratorSettings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the session.

        Args:
            user_id: User this session belongs to
            coordinator: Shared request coordinator
            recorder: Progress recorder (only writer of weekly records)
            snapshots: Local snapshot mirror
            settings: Orchestrator settings (epoch, thresholds, default tracks)
            clock: Wall clock returning timezone-aware datetimes
        """
        self.user_id = user_id
        self.coordinator = coordinator
        self.recorder = recorder
        self.snapshots = snapshots
        self.settings = settings or OrchestratorSettings()
        self._now = clock or (lambda: datetime.now(timezone.utc))

        self.state = SessionSnapshot()
        self.last_error: Optional[str] = None
        self.started = False
        # (week, track, turn scope) of practice turns already stored
        self._applied_turns: Set[Tuple[int, str, str]] = set()

    # ==================== Properties ====================

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def week_number(self) -> Optional[int]:
        return self.state.last_loaded_week

    def current_week(self) -> int:
        return compute_week_number(self.settings.program_epoch, self._now())

    def snapshot(self) -> SessionSnapshot:
        """Current externally visible state (after a rollover check)."""
        self._enter()
        return dataclasses.replace(
            self.state,
            completed_tracks=list(self.state.completed_tracks),
            required_tracks=list(self.state.required_tracks),
        )

    # ==================== Startup & Recovery ====================

    async def start(self) -> SessionSnapshot:
        """
        Restore the session on cold start.

        A snapshot is resumed only if it was taken in the current week;
        otherwise the week's record is loaded from the progress store.

        Raises:
            PersistenceError: The progress store could not be read
        """
        week = self.current_week()
        restored = restore_snapshot(self.snapshots.load(self.user_id), week)

        if restored is not None:
            self.state = restored
            self.started = True
            logger.info(
                f"♻️ [LearningSession] Restored user {self.user_id} week {week} in phase {restored.phase.value}"
            )
            return self.snapshot()

        self.snapshots.clear(self.user_id)
        await self._load_fresh(week)
        self.started = True
        return self.snapshot()

    async def _load_fresh(self, week: int):
        record = await self.recorder.get(self.user_id, week)
        self.state = self._state_from_record(record, week)
        self._save_snapshot()
        logger.info(
            f"📥 [LearningSession] Loaded user {self.user_id} week {week} from store "
            f"(phase {self.state.phase.value})"
        )

    def _state_from_record(self, record: Optional[WeeklyProgressRecord], week: int) -> SessionSnapshot:
        state = SessionSnapshot(phase=Phase.ONBOARDING, last_loaded_week=week)
        if record is None or record.output_for("clo") is None:
            return state

        state.plan_summary = summarize_plan(record.output_for("clo"))
        if not record.is_completed("clo"):
            state.phase = Phase.PLAN_REVIEW
            return state

        state.phase = Phase.INSTRUCTION
        lesson = record.output_for("instructor")
        if lesson is not None:
            state.lesson_summary = summarize_lesson(lesson, self.settings.default_practice_tracks)
            state.required_tracks = self._valid_tracks(state.lesson_summary["required_tracks"])
            state.completed_tracks = [t for t in state.required_tracks if record.is_completed(t)]
        return state

    async def reset(self) -> SessionSnapshot:
        """
        Hard reset: drop the local snapshot and cached agent results, then
        reload the current week from the progress store.
        """
        self.snapshots.clear(self.user_id)
        self.coordinator.invalidate(self.user_id)
        self.last_error = None
        self._applied_turns.clear()
        await self._load_fresh(self.current_week())
        self.started = True
        logger.info(f"🔄 [LearningSession] Hard reset for user {self.user_id}")
        return self.snapshot()

    # ==================== Week Rollover ====================

    def check_rollover(self) -> bool:
        """
        Restart at ONBOARDING if the computed week differs from the loaded one.

        Synchronous and cheap; never touches the network.

        Returns:
            True if the session rolled over to a new week
        """
        week = self.current_week()
        previous = self.state.last_loaded_week
        if previous is None or week == previous:
            return False

        self.coordinator.invalidate(self.user_id, previous)
        self._applied_turns.clear()
        self.snapshots.clear(self.user_id)
        self.state = SessionSnapshot(phase=Phase.ONBOARDING, last_loaded_week=week)
        self.last_error = None
        self._save_snapshot()
        logger.info(f"📅 [LearningSession] User {self.user_id} rolled over from week {previous} to week {week}")
        return True

    def _enter(self):
        if not self.started:
            raise OrchestratorError("Session not started; call start() first")
        self.check_rollover()

    # ==================== Helpers ====================

    def _require(self, action: str, *phases: Phase):
        if self.state.phase not in phases:
            raise InvalidTransitionError(action, self.state.phase.value)

    def _unchanged(self, phase: Phase, week: int, track: Optional[str] = None) -> bool:
        return (
            self.state.phase == phase
            and self.state.last_loaded_week == week
            and (track is None or self.state.active_track == track)
        )

    def _save_snapshot(self):
        self.state.saved_at = self._now()
        self.snapshots.save(self.user_id, self.state)

    def _transition(self, phase: Phase, **changes):
        previous = self.state.phase
        self.state = dataclasses.replace(self.state, phase=phase, **changes)
        self.last_error = None
        self._save_snapshot()
        if previous != phase:
            logger.info(f"➡️ [LearningSession] User {self.user_id}: {previous.value} -> {phase.value}")

    def _ok(self, data: Optional[Dict[str, Any]] = None) -> ActionOutcome:
        return ActionOutcome(success=True, phase=self.state.phase, data=data)

    def _fail(self, error: str) -> ActionOutcome:
        self.last_error = error
        logger.warning(f"⚠️ [LearningSession] User {self.user_id} stays in {self.state.phase.value}: {error}")
        return ActionOutcome(success=False, phase=self.state.phase, error=error)

    def _valid_tracks(self, tracks: List[str]) -> List[str]:
        valid = [t for t in tracks if t in PRACTICE_TRACKS]
        if len(valid) != len(tracks):
            logger.warning(f"⚠️ [LearningSession] Ignoring unknown practice tracks in {tracks}")
        return valid or [t for t in self.settings.default_practice_tracks if t in PRACTICE_TRACKS]

    def _track_criterion_met(self, track: str, data: Dict[str, Any]) -> bool:
        if data.get("complete") or data.get("track_complete"):
            return True
        if track == "ta":
            return bool(data.get("task_complete"))
        score = data.get("mastery_score", data.get("mastery"))
        return isinstance(score, (int, float)) and score >= self.settings.mastery_threshold

    # ==================== ONBOARDING ====================

    async def acknowledge(self, learning_parameters: Dict[str, Any]) -> ActionOutcome:
        """
        User acknowledged their learning parameters; generate the week's plan.

        Success moves to PLAN_REVIEW. A CLO text-only reply (e.g. asking the
        user to confirm parameters) keeps the session in ONBOARDING and is
        returned as data.
        """
        self._enter()
        self._require("acknowledge", Phase.ONBOARDING)
        week = self.state.last_loaded_week

        result = await self.coordinator.request(
            "clo", "generate_module", self.user_id, week,
            payload={
                "userInput": learning_parameters.get("user_input", ""),
                "learningParameters": learning_parameters,
            },
        )
        if not result.success:
            return self._fail(result.error)
        if not self._unchanged(Phase.ONBOARDING, week):
            return self._joined_plan(week)

        data = result.data or {}
        if set(data) <= {"text_response"}:
            # Not a plan; the next acknowledgment must reach the agent again
            self.coordinator.invalidate(self.user_id, week)
            return self._ok({"text_response": data.get("text_response")})

        plan = flatten_plan(data)
        try:
            await self.recorder.record(self.user_id, week, "clo", plan, completed=False)
        except PersistenceError as e:
            return self._fail(str(e))
        if not self._unchanged(Phase.ONBOARDING, week):
            return self._joined_plan(week)

        self._transition(Phase.PLAN_REVIEW, plan_summary=summarize_plan(plan))
        return self._ok({"plan": self.state.plan_summary})

    def _joined_plan(self, week: int) -> ActionOutcome:
        # A concurrent acknowledgment for the same week already produced the plan
        if self.state.phase == Phase.PLAN_REVIEW and self.state.last_loaded_week == week:
            return self._ok({"plan": self.state.plan_summary})
        return self._fail(STALE_RESULT_ERROR)

    # ==================== PLAN_REVIEW ====================

    async def approve_plan(self) -> ActionOutcome:
        """
        Approve the generated plan and start instruction.

        Approving an already approved plan is a no-op.
        """
        self._enter()
        if self.state.phase in (Phase.INSTRUCTION, Phase.PRACTICE, Phase.COMPLETE):
            return self._ok()
        self._require("approve_plan", Phase.PLAN_REVIEW)
        week = self.state.last_loaded_week

        try:
            record = await self.recorder.mark_completed(self.user_id, week, "clo")
        except PersistenceError as e:
            return self._fail(str(e))
        if not self._unchanged(Phase.PLAN_REVIEW, week):
            # A concurrent approval already moved the session on
            return self._ok() if self.state.phase == Phase.INSTRUCTION else self._fail(STALE_RESULT_ERROR)

        self._transition(Phase.INSTRUCTION, completed_tracks=[], active_track=None)
        return self._ok({"overall_progress": record.overall_progress})

    async def reject_plan(self) -> ActionOutcome:
        """Reject the plan: delete the week's record and start over."""
        self._enter()
        self._require("reject_plan", Phase.PLAN_REVIEW)
        week = self.state.last_loaded_week

        try:
            await self.recorder.discard_week(self.user_id, week)
        except PersistenceError as e:
            return self._fail(str(e))
        self.coordinator.invalidate(self.user_id, week)
        if self.state.last_loaded_week != week:
            return self._fail(STALE_RESULT_ERROR)

        self._transition(
            Phase.ONBOARDING,
            plan_summary=None,
            lesson_summary=None,
            active_track=None,
            completed_tracks=[],
            required_tracks=[],
            practice_turns=0,
        )
        return self._ok()

    # ==================== INSTRUCTION ====================

    async def start_lesson(self, day: Optional[int] = None) -> ActionOutcome:
        """
        Deliver the daily lesson.

        The lesson declares which practice tracks it requires; the settings
        default applies when it does not. An already delivered lesson is
        returned without calling the instructor again.
        """
        self._enter()
        self._require("start_lesson", Phase.INSTRUCTION)
        if self.state.lesson_summary is not None:
            return self._ok({"lesson": self.state.lesson_summary})
        week = self.state.last_loaded_week

        result = await self.coordinator.request(
            "instructor", "deliver_lesson", self.user_id, week,
            payload={"plan": self.state.plan_summary, "day": day},
        )
        if not result.success:
            return self._fail(result.error)
        if not self._unchanged(Phase.INSTRUCTION, week):
            return self._fail(STALE_RESULT_ERROR)

        lesson = result.data or {}
        try:
            record = await self.recorder.record(self.user_id, week, "instructor", lesson, completed=True)
        except PersistenceError as e:
            return self._fail(str(e))
        if not self._unchanged(Phase.INSTRUCTION, week):
            return self._fail(STALE_RESULT_ERROR)

        summary = summarize_lesson(lesson, self.settings.default_practice_tracks)
        required = self._valid_tracks(summary["required_tracks"])
        summary["required_tracks"] = required
        completed = [t for t in required if record.is_completed(t)]
        self._transition(
            Phase.INSTRUCTION,
            lesson_summary=summary,
            required_tracks=required,
            completed_tracks=completed,
        )
        return self._ok({"lesson": summary})

    async def choose_track(self, track: str) -> ActionOutcome:
        """Branch from the lesson into a practice track."""
        self._enter()
        self._require("choose_track", Phase.INSTRUCTION)
        if track not in PRACTICE_TRACKS:
            raise ValueError(f"Unknown practice track '{track}'")
        if self.state.lesson_summary is None:
            raise InvalidTransitionError("choose_track", "instruction (no lesson delivered)")

        self._applied_turns.clear()
        self._transition(
            Phase.PRACTICE,
            active_track=track,
            practice_turns=0,
            practice_attempt=self.state.practice_attempt + 1,
        )
        return self._ok({"track": track})

    async def finish_week(self) -> ActionOutcome:
        """
        Close the week once every required practice track is complete.

        Reaching COMPLETE triggers a rollover check.
        """
        self._enter()
        if self.state.phase == Phase.COMPLETE:
            return self._ok()
        self._require("finish_week", Phase.INSTRUCTION)

        required = self.state.required_tracks
        missing = [t for t in required if t not in self.state.completed_tracks]
        if not required or missing:
            return self._fail(f"Practice tracks not completed: {', '.join(missing or ['lesson not started'])}")

        self._transition(Phase.COMPLETE, active_track=None)
        self.check_rollover()
        return self._ok()

    # ==================== PRACTICE ====================

    async def send_practice_message(self, message: str) -> ActionOutcome:
        """
        Exchange one turn with the active practice agent.

        When the agent reports the track's completion criterion (mastery
        threshold for Socratic, task completion for hands-on), control
        returns to INSTRUCTION with the track flagged complete.

        A double submit of the same message shares one agent call, and the
        turn is stored once; the duplicate reports the shared response.
        """
        self._enter()
        self._require("send_practice_message", Phase.PRACTICE)
        week = self.state.last_loaded_week
        track = self.state.active_track
        agent = get_agent(track)
        turn = self.state.practice_turns + 1
        # Attempt number keeps a re-entered track from hitting cached replies
        scope = f"{self.state.practice_attempt}.{turn}:{hashlib.md5(message.encode()).hexdigest()[:12]}"

        result = await self.coordinator.request(
            track, agent.default_action, self.user_id, week,
            payload={
                "message": message,
                "turn": turn,
                "cloContext": self.state.plan_summary,
                "lesson": self.state.lesson_summary,
            },
            scope=scope,
        )
        if not result.success:
            return self._fail(result.error)

        response = result.data or {}
        criterion_met = self._track_criterion_met(track, response)
        claim = (week, track, scope)
        if claim in self._applied_turns:
            logger.info(f"🔗 [LearningSession] User {self.user_id} turn {turn} already applied by a joined request")
            return self._ok({"response": response, "track_completed": criterion_met})
        if not self._unchanged(Phase.PRACTICE, week, track):
            return self._fail(STALE_RESULT_ERROR)

        self._applied_turns.add(claim)
        try:
            current = await self.recorder.get(self.user_id, week)
            previous = (current.output_for(track) if current else None) or {}
            transcript = {
                **previous,
                "turns": list(previous.get("turns", [])) + [{"message": message, "response": response}],
                "last_response": response,
            }
            await self.recorder.record(self.user_id, week, track, transcript, completed=criterion_met)
        except PersistenceError as e:
            # Not stored, so a resend of the same message must record it
            self._applied_turns.discard(claim)
            return self._fail(str(e))
        if not self._unchanged(Phase.PRACTICE, week, track):
            return self._fail(STALE_RESULT_ERROR)

        if criterion_met:
            self._complete_track(track)
        else:
            self._transition(Phase.PRACTICE, practice_turns=turn)
        return self._ok({"response": response, "track_completed": criterion_met})

    async def finish_track(self) -> ActionOutcome:
        """User signals the active track is done."""
        self._enter()
        self._require("finish_track", Phase.PRACTICE)
        week = self.state.last_loaded_week
        track = self.state.active_track

        try:
            await self.recorder.mark_completed(self.user_id, week, track)
        except PersistenceError as e:
            return self._fail(str(e))
        if not self._unchanged(Phase.PRACTICE, week, track):
            return self._fail(STALE_RESULT_ERROR)

        self._complete_track(track)
        return self._ok({"track": track})

    async def leave_practice(self) -> ActionOutcome:
        """Return to the lesson without completing the active track."""
        self._enter()
        self._require("leave_practice", Phase.PRACTICE)
        self._transition(Phase.INSTRUCTION, active_track=None, practice_turns=0)
        return self._ok()

    def _complete_track(self, track: str):
        completed = list(self.state.completed_tracks)
        if track not in completed:
            completed.append(track)
        self._transition(Phase.INSTRUCTION, active_track=None, practice_turns=0, completed_tracks=completed)

    # ==================== Supplementary agents ====================

    async def request_code_review(self, repository_url: str, code_context: Optional[str] = None) -> ActionOutcome:
        """Ask the lead engineer agent to review the user's repository."""
        self._enter()
        self._require("request_code_review", Phase.INSTRUCTION, Phase.COMPLETE)
        week = self.state.last_loaded_week

        result = await self.coordinator.request(
            "alex", "analyze_code", self.user_id, week,
            payload={"repositoryUrl": repository_url, "codeContext": code_context},
        )
        return await self._record_supplementary("alex", week, result)

    async def request_brand_strategy(
        self,
        business_context: str,
        personal_reflection: Optional[str] = None
    ) -> ActionOutcome:
        """Generate the week's brand strategy from everything learned so far."""
        self._enter()
        self._require("request_brand_strategy", Phase.INSTRUCTION, Phase.COMPLETE)
        week = self.state.last_loaded_week

        try:
            intelligence = await self.recorder.weekly_intelligence(self.user_id, week)
        except PersistenceError as e:
            return self._fail(str(e))

        result = await self.coordinator.request(
            "brand", "generate_strategy", self.user_id, week,
            payload={
                "businessContext": business_context,
                "weeklyIntelligence": intelligence,
                "personalReflection": personal_reflection,
            },
        )
        return await self._record_supplementary("brand", week, result)

    async def _record_supplementary(self, agent_name: str, week: int, result: AgentResult) -> ActionOutcome:
        if not result.success:
            return self._fail(result.error)
        if self.state.last_loaded_week != week:
            return self._fail(STALE_RESULT_ERROR)
        try:
            record = await self.recorder.record(self.user_id, week, agent_name, result.data or {}, completed=True)
        except PersistenceError as e:
            return self._fail(str(e))
        return self._ok({"result": result.data, "overall_progress": record.overall_progress})

    # ==================== Progress ====================

    async def progress(self) -> Optional[WeeklyProgressRecord]:
        """
        Current week's progress record (None if the week has not started).

        Raises:
            PersistenceError: The progress store could not be read
        """
        self._enter()
        return await self.recorder.get(self.user_id, self.state.last_loaded_week)
