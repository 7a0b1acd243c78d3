# discussion_be/routers/webhooks.py
# Database-webhook entry points. Deliveries are at-least-once, so every
# handler treats a repeated event as success.
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from discussion_be.deps import (
    get_db,
    get_evaluation_pipeline,
    get_readiness_coordinator,
    get_transcript_collector,
)
from discussion_be.routers.common import already_done, http_error
from discussion_be.schemas.discussion import WebhookPayload
from discussion_be.schemas.evaluation import EvaluationOut
from discussion_be.services.errors import AlreadyHandled, DiscussionError, MissingFields
from discussion_be.services.evaluation import EvaluationPipeline, run_evaluation
from discussion_be.services.readiness import ReadinessCoordinator
from discussion_be.services.transcripts import TranscriptCollector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


def _session_id(payload: WebhookPayload) -> str:
    session_id = payload.record.session_id
    if not session_id:
        raise http_error(MissingFields(["record.session_id"]))
    return session_id


@router.post("/start-discussion")
def start_discussion(
    payload: WebhookPayload,
    db: Session = Depends(get_db),
    coordinator: ReadinessCoordinator = Depends(get_readiness_coordinator),
):
    # fired on participant updates; re-runs the quorum check
    session_id = _session_id(payload)
    logger.info("[WEBHOOK] start-discussion session=%s", session_id)
    try:
        outcome = coordinator.check_quorum(db, session_id)
    except DiscussionError as e:
        raise http_error(e)
    return {
        "message": outcome.message,
        "status": outcome.status,
        "started": outcome.started,
        "discussion_start_time": outcome.discussion_start_time,
    }


@router.post("/merge-transcript")
def merge_transcript(
    payload: WebhookPayload,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    collector: TranscriptCollector = Depends(get_transcript_collector),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
):
    # fired on transcript inserts
    session_id = _session_id(payload)
    logger.info("[WEBHOOK] merge-transcript session=%s", session_id)
    try:
        outcome = collector.check_merge(db, session_id)
    except DiscussionError as e:
        raise http_error(e)

    if outcome.merged:
        background_tasks.add_task(run_evaluation, pipeline, session_id)
    return {
        "status": outcome.status,
        "submitted": outcome.submitted_count,
        "expected": outcome.expected_count,
        "evaluation_dispatched": outcome.merged,
    }


@router.post("/evaluate")
def evaluate(
    payload: WebhookPayload,
    db: Session = Depends(get_db),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
):
    # fired on merged transcript inserts
    session_id = _session_id(payload)
    logger.info("[WEBHOOK] evaluate session=%s", session_id)
    try:
        result = pipeline.evaluate(db, session_id)
    except AlreadyHandled as e:
        return already_done(e, session_id=session_id)
    except DiscussionError as e:
        raise http_error(e)
    return {
        "message": "Evaluation completed",
        "session_id": session_id,
        "evaluations": [EvaluationOut.model_validate(row) for row in result.evaluations],
    }
