# discussion_be/routers/common.py
# Domain error -> HTTP mapping shared by the routers
from fastapi import HTTPException

from discussion_be.services.errors import (
    AlreadyHandled,
    DiscussionError,
    InvalidScoringResponse,
    InvalidTransition,
    MissingFields,
    RecordingProviderError,
    SessionFull,
    SessionNotFound,
)


def http_error(e: DiscussionError) -> HTTPException:
    if isinstance(e, MissingFields):
        return HTTPException(status_code=400, detail={"message": "missing_fields", "fields": e.fields})
    if isinstance(e, SessionNotFound):
        return HTTPException(status_code=404, detail={"message": "session_not_found"})
    if isinstance(e, (InvalidTransition, SessionFull)):
        return HTTPException(status_code=409, detail={"message": "conflict", "detail": str(e)})
    if isinstance(e, RecordingProviderError):
        return HTTPException(
            status_code=502,
            detail={"message": "recording_provider_error", "detail": str(e), "provider": e.details},
        )
    if isinstance(e, InvalidScoringResponse):
        return HTTPException(status_code=502, detail={"message": "scoring_failed", "detail": str(e)})
    return HTTPException(status_code=400, detail={"message": "precondition_failed", "detail": str(e)})


def already_done(e: AlreadyHandled, **extra) -> dict:
    # benign race / repeated event: reported as success
    return {"message": "already_done", "detail": str(e), **extra}
