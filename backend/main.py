"""
FastAPI Backend for the Weekly Learning Session Orchestrator

Provides REST API endpoints with:
- Supabase bearer token authentication
- One restored LearningSession per user
- Every learning-phase action (plan, lesson, practice, completion)
- Weekly progress lookup
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Awaitable, Callable
import os
import sys
import time
import logging

from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the learning_session_orchestrator package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'learning_session_orchestrator', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client, is_supabase_configured
from lib.auth import get_current_user

from learning_session_orchestrator.config import OrchestratorSettings
from learning_session_orchestrator.errors import (
    ConfigurationError,
    InvalidTransitionError,
    PersistenceError,
)
from learning_session_orchestrator.orchestrator import SessionOrchestrator
from learning_session_orchestrator.session_machine import ActionOutcome, LearningSession

# Singleton orchestrator shared by all requests
_orchestrator: Optional[SessionOrchestrator] = None


def get_orchestrator() -> SessionOrchestrator:
    """Get or create the process-wide SessionOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        settings = OrchestratorSettings.from_env()
        supabase = get_supabase_client() if is_supabase_configured() else None
        _orchestrator = SessionOrchestrator.from_settings(settings, supabase_client=supabase)
        logger.success("Session orchestrator initialized", data={
            "agent_base_url": settings.agent_base_url,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "supabase_connected": supabase is not None,
        })
    return _orchestrator


app = FastAPI(
    title="Weekly Learning Session API",
    description="Coordinates curriculum, instruction and practice agents into weekly sessions",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class AcknowledgeRequest(BaseModel):
    learning_parameters: Dict[str, Any] = {}
    user_input: Optional[str] = None


class LessonRequest(BaseModel):
    day: Optional[int] = None


class PracticeMessage(BaseModel):
    content: str


class CodeReviewRequest(BaseModel):
    repository_url: str
    code_context: Optional[str] = None


class BrandStrategyRequest(BaseModel):
    business_context: str
    personal_reflection: Optional[str] = None


class SessionStateResponse(BaseModel):
    phase: str
    week_number: Optional[int]
    plan_summary: Optional[Dict[str, Any]] = None
    lesson_summary: Optional[Dict[str, Any]] = None
    active_track: Optional[str] = None
    completed_tracks: List[str] = []
    required_tracks: List[str] = []
    practice_turns: int = 0
    last_error: Optional[str] = None


class ActionResponse(BaseModel):
    success: bool
    phase: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    session: SessionStateResponse


class ProgressResponse(BaseModel):
    week_number: int
    completion: Dict[str, bool]
    completed_agents: int
    overall_progress: int
    updated_at: Optional[str] = None


# ==================== Helper Functions ====================

def state_response(session: LearningSession) -> SessionStateResponse:
    snapshot = session.snapshot()
    return SessionStateResponse(
        phase=snapshot.phase.value,
        week_number=snapshot.last_loaded_week,
        plan_summary=snapshot.plan_summary,
        lesson_summary=snapshot.lesson_summary,
        active_track=snapshot.active_track,
        completed_tracks=snapshot.completed_tracks,
        required_tracks=snapshot.required_tracks,
        practice_turns=snapshot.practice_turns,
        last_error=session.last_error,
    )


async def load_session(orchestrator: SessionOrchestrator, user_id: str) -> LearningSession:
    try:
        return await orchestrator.get_session(user_id)
    except PersistenceError as e:
        logger.error("Could not load session", error=e, data={"user_id": user_id})
        raise HTTPException(status_code=503, detail="Progress store unavailable")


async def run_action(
    orchestrator: SessionOrchestrator,
    user: dict,
    name: str,
    action: Callable[[LearningSession], Awaitable[ActionOutcome]]
) -> ActionResponse:
    """Run one session action and map orchestrator errors to HTTP errors."""
    start_time = time.time()
    path = f"/api/session/{name}"
    logger.request("POST", path, user_id=user["id"])

    session = await load_session(orchestrator, user["id"])
    try:
        outcome = await action(session)
        logger.subsection(f"{name}: {outcome.phase.value} (success={outcome.success})")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        logger.error("Orchestrator misconfigured", error=e, data={"action": name})
        raise HTTPException(status_code=500, detail="Orchestrator configuration error")

    logger.response(200, path, duration=time.time() - start_time, data={
        "success": outcome.success,
        "phase": outcome.phase.value,
        "error": outcome.error,
    })
    return ActionResponse(
        success=outcome.success,
        phase=outcome.phase.value,
        data=outcome.data,
        error=outcome.error,
        session=state_response(session),
    )


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Weekly Learning Session API",
        "version": "1.0.0",
        "supabase_configured": is_supabase_configured(),
    }


@app.get("/api/session", response_model=SessionStateResponse)
async def get_session_state(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    """Current session state (restored on first access, rolled over if the week changed)."""
    session = await load_session(orchestrator, user["id"])
    return state_response(session)


@app.post("/api/session/acknowledge", response_model=ActionResponse)
async def acknowledge(
    request: AcknowledgeRequest,
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    parameters = dict(request.learning_parameters)
    if request.user_input is not None:
        parameters["user_input"] = request.user_input
    return await run_action(orchestrator, user, "acknowledge", lambda s: s.acknowledge(parameters))


@app.post("/api/session/plan/approve", response_model=ActionResponse)
async def approve_plan(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, "plan/approve", lambda s: s.approve_plan())


@app.post("/api/session/plan/reject", response_model=ActionResponse)
async def reject_plan(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, "plan/reject", lambda s: s.reject_plan())


@app.post("/api/session/lesson", response_model=ActionResponse)
async def start_lesson(
    request: LessonRequest,
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, "lesson", lambda s: s.start_lesson(request.day))


@app.post("/api/session/practice/{track}", response_model=ActionResponse)
async def choose_track(
    track: str,
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, f"practice/{track}", lambda s: s.choose_track(track))


@app.post("/api/session/practice-message", response_model=ActionResponse)
async def send_practice_message(
    message: PracticeMessage,
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(
        orchestrator, user, "practice-message", lambda s: s.send_practice_message(message.content)
    )


@app.post("/api/session/practice-done", response_model=ActionResponse)
async def finish_track(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, "practice-done", lambda s: s.finish_track())


@app.post("/api/session/practice-leave", response_model=ActionResponse)
async def leave_practice(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, "practice-leave", lambda s: s.leave_practice())


@app.post("/api/session/finish", response_model=ActionResponse)
async def finish_week(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(orchestrator, user, "finish", lambda s: s.finish_week())


@app.post("/api/session/code-review", response_model=ActionResponse)
async def request_code_review(
    request: CodeReviewRequest,
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(
        orchestrator, user, "code-review",
        lambda s: s.request_code_review(request.repository_url, request.code_context)
    )


@app.post("/api/session/brand-strategy", response_model=ActionResponse)
async def request_brand_strategy(
    request: BrandStrategyRequest,
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    return await run_action(
        orchestrator, user, "brand-strategy",
        lambda s: s.request_brand_strategy(request.business_context, request.personal_reflection)
    )


@app.post("/api/session/reset", response_model=SessionStateResponse)
async def reset_session(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    """Hard reset: drop local state and cached results, reload from the store."""
    logger.section("Hard reset", data={"user_id": user["id"]})
    session = await load_session(orchestrator, user["id"])
    try:
        await session.reset()
    except PersistenceError as e:
        logger.error("Reset failed", error=e, data={"user_id": user["id"]})
        raise HTTPException(status_code=503, detail="Progress store unavailable")
    return state_response(session)


@app.get("/api/progress", response_model=ProgressResponse)
async def get_progress(
    user: dict = Depends(get_current_user),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    """Progress record for the current week."""
    session = await load_session(orchestrator, user["id"])
    try:
        record = await session.progress()
    except PersistenceError as e:
        logger.error("Progress lookup failed", error=e, data={"user_id": user["id"]})
        raise HTTPException(status_code=503, detail="Progress store unavailable")

    if record is None:
        raise HTTPException(status_code=404, detail="No progress recorded for this week")

    return ProgressResponse(
        week_number=record.week_number,
        completion=record.completion,
        completed_agents=record.completed_agents,
        overall_progress=record.overall_progress,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Close the agent HTTP client."""
    if _orchestrator is not None:
        await _orchestrator.aclose()
        logger.info("🛑 Agent gateway closed")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
