from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy.orm import Session

from discussion_be.deps import get_db, get_readiness_coordinator, get_recording_manager
from discussion_be.routers.common import already_done, http_error
from discussion_be.schemas.discussion import (
    CreateSessionRequest,
    CreateSessionResponse,
    JoinSessionRequest,
    MarkReadyRequest,
    MergedTranscriptResponse,
    SessionCodeRequest,
    SessionStatusResponse,
)
from discussion_be.schemas.evaluation import EvaluationListResponse, EvaluationOut
from discussion_be.services.errors import AlreadyHandled, DiscussionError, MissingFields
from discussion_be.services.evaluation import list_evaluations
from discussion_be.services.readiness import ReadinessCoordinator
from discussion_be.services.recording import RecordingLifecycleManager
from discussion_be.services.session_service import SessionService, get_session_or_404
from discussion_be.services.transcripts import get_merged_transcript

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("/create", response_model=CreateSessionResponse, status_code=201)
def create_session(payload: CreateSessionRequest, db: Session = Depends(get_db)):
    try:
        session = SessionService.create_session(
            db,
            created_by=payload.user_id,
            test_topic=payload.test_topic,
            ai_count=payload.ai_count,
            instructions=payload.instructions,
        )
    except DiscussionError as e:
        raise http_error(e)
    return CreateSessionResponse(session_id=session.id, session_code=session.session_code)


@router.post("/join")
def join_session(
    payload: JoinSessionRequest,
    db: Session = Depends(get_db),
    coordinator: ReadinessCoordinator = Depends(get_readiness_coordinator),
):
    try:
        result = SessionService.join_session(db, payload.code, payload.user_id, payload.username)
        # participants may have marked ready while the room was still filling
        if result["preparation_started"]:
            coordinator.check_quorum(db, result["session_id"])
    except AlreadyHandled as e:
        return already_done(e)
    except DiscussionError as e:
        raise http_error(e)
    return {"success": True, **result}


@router.get("/status", response_model=SessionStatusResponse)
def session_status(
    code: str = Query(None, description="session join code"),
    db: Session = Depends(get_db),
    coordinator: ReadinessCoordinator = Depends(get_readiness_coordinator),
):
    if not code:
        raise http_error(MissingFields(["code"]))
    try:
        status = SessionService.get_status(db, code)
        # preparation time is over: move on to discussion
        if status["status"] == "preparation" and status["remaining"] == 0:
            coordinator.check_quorum(db, status["session_id"])
            status = SessionService.get_status(db, code)
        return status
    except DiscussionError as e:
        raise http_error(e)


@router.post("/expire")
def expire_session(payload: SessionCodeRequest, db: Session = Depends(get_db)):
    if not payload.code:
        raise http_error(MissingFields(["code"]))
    try:
        expired = SessionService.expire_session(db, payload.code)
    except AlreadyHandled as e:
        return already_done(e)
    except DiscussionError as e:
        raise http_error(e)
    if not expired:
        return {"success": True, "message": "already_done"}
    return {"success": True, "status": "expired"}


@router.post("/mark-ready")
def mark_ready(
    payload: MarkReadyRequest,
    db: Session = Depends(get_db),
    coordinator: ReadinessCoordinator = Depends(get_readiness_coordinator),
):
    try:
        outcome = coordinator.mark_ready(db, payload.session_id, payload.user_id)
    except DiscussionError as e:
        raise http_error(e)
    return asdict(outcome)


@router.post("/{session_id}/start-preparation")
def start_preparation(
    session_id: str,
    db: Session = Depends(get_db),
    coordinator: ReadinessCoordinator = Depends(get_readiness_coordinator),
):
    # creator starts before the room is full
    try:
        get_session_or_404(db, session_id)
        moved = SessionService.start_preparation(db, session_id)
        outcome = coordinator.check_quorum(db, session_id)
    except DiscussionError as e:
        raise http_error(e)
    return {"transitioned": moved, **asdict(outcome)}


@router.post("/{session_id}/end-discussion")
def end_discussion(
    session_id: str,
    db: Session = Depends(get_db),
    recordings: RecordingLifecycleManager = Depends(get_recording_manager),
):
    try:
        return SessionService.end_discussion(db, session_id, recordings=recordings)
    except DiscussionError as e:
        raise http_error(e)


@router.get("/{session_id}/merged-transcript", response_model=MergedTranscriptResponse)
def merged_transcript(session_id: str, db: Session = Depends(get_db)):
    merged = get_merged_transcript(db, session_id)
    if merged is None:
        raise HTTPException(status_code=404, detail={"message": "merged_transcript_not_found"})
    return MergedTranscriptResponse(
        session_id=session_id,
        merged_transcript=merged.merged_transcript,
        created_at=merged.created_at,
    )


@router.get("/{session_id}/evaluations", response_model=EvaluationListResponse)
def evaluations(session_id: str, db: Session = Depends(get_db)):
    try:
        session = get_session_or_404(db, session_id)
    except DiscussionError as e:
        raise http_error(e)
    rows = list_evaluations(db, session_id)
    return EvaluationListResponse(
        session_id=session_id,
        status=session.status,
        evaluations=[EvaluationOut.model_validate(row) for row in rows],
    )
