from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from discussion_be.deps import get_db, get_recording_manager
from discussion_be.routers.common import http_error
from discussion_be.schemas.discussion import RecordingStartRequest, RecordingStopRequest
from discussion_be.services.errors import DiscussionError, PreconditionFailed
from discussion_be.services.recording import MODES, RecordingLifecycleManager
from discussion_be.services.session_service import get_session_or_404

router = APIRouter(prefix="/api/recordings", tags=["recordings"])


@router.post("/start")
def start_recording(
    payload: RecordingStartRequest,
    db: Session = Depends(get_db),
    recordings: RecordingLifecycleManager = Depends(get_recording_manager),
):
    """Start one mode, or both when mode is omitted. A failed mode is reported, not raised."""
    try:
        session = get_session_or_404(db, payload.session_id)
        if payload.mode and payload.mode not in MODES:
            raise PreconditionFailed(f"unknown recording mode {payload.mode!r}")
        modes = [payload.mode] if payload.mode else list(MODES)
        handles = {mode: recordings.start_mode(db, session, mode, token=payload.token) for mode in modes}
    except DiscussionError as e:
        raise http_error(e)

    return {
        "session_id": payload.session_id,
        "recordings": {mode: asdict(handle) for mode, handle in handles.items()},
        "started": [mode for mode, handle in handles.items() if handle.started],
    }


@router.post("/stop")
def stop_recording(
    payload: RecordingStopRequest,
    db: Session = Depends(get_db),
    recordings: RecordingLifecycleManager = Depends(get_recording_manager),
):
    if payload.mode not in MODES:
        raise http_error(PreconditionFailed(f"unknown recording mode {payload.mode!r}"))
    try:
        outcome = recordings.stop_recording(db, payload.session_id, payload.mode, cname=payload.cname, uid=payload.uid)
    except DiscussionError as e:
        raise http_error(e)

    if outcome.already_stopped:
        return {"message": "already_stopped", "mode": payload.mode}
    return {"message": "stopped", "mode": payload.mode, "fileList": outcome.file_list}
