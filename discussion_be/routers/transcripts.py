from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from discussion_be.deps import get_db, get_evaluation_pipeline, get_transcript_collector
from discussion_be.routers.common import http_error
from discussion_be.schemas.discussion import SubmitTranscriptRequest
from discussion_be.services.errors import DiscussionError
from discussion_be.services.evaluation import EvaluationPipeline, run_evaluation
from discussion_be.services.transcripts import TranscriptCollector

router = APIRouter(prefix="/api/transcripts", tags=["transcripts"])


@router.post("/submit")
def submit_transcript(
    payload: SubmitTranscriptRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    collector: TranscriptCollector = Depends(get_transcript_collector),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
):
    segments = None
    if payload.transcript is not None:
        segments = [segment.model_dump() for segment in payload.transcript]

    try:
        outcome = collector.submit(db, payload.session_id, payload.user_id, segments, payload.start_at)
    except DiscussionError as e:
        raise http_error(e)

    # only the merging request dispatches scoring
    if outcome.merged:
        background_tasks.add_task(run_evaluation, pipeline, outcome.session_id)

    return {
        "session_id": outcome.session_id,
        "status": outcome.status,
        "stored": outcome.stored,
        "submitted": outcome.submitted_count,
        "expected": outcome.expected_count,
        "evaluation_dispatched": outcome.merged,
    }
