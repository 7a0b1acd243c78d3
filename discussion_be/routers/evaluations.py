from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from discussion_be.deps import get_db, get_evaluation_pipeline
from discussion_be.routers.common import already_done, http_error
from discussion_be.schemas.evaluation import EvaluateRequest, EvaluationOut
from discussion_be.services.errors import AlreadyHandled, DiscussionError, MissingFields
from discussion_be.services.evaluation import EvaluationPipeline

router = APIRouter(prefix="/api/evaluate", tags=["evaluation"])


@router.post("/trigger")
def trigger_evaluation(
    payload: EvaluateRequest,
    db: Session = Depends(get_db),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
):
    """Score a merged session synchronously (manual re-run after a failed background attempt)."""
    if not payload.session_id:
        raise http_error(MissingFields(["session_id"]))
    try:
        result = pipeline.evaluate(db, payload.session_id)
    except AlreadyHandled as e:
        return already_done(e, session_id=payload.session_id)
    except DiscussionError as e:
        raise http_error(e)

    return {
        "message": "Evaluation completed",
        "session_id": payload.session_id,
        "evaluations": [EvaluationOut.model_validate(row) for row in result.evaluations],
        "skipped_labels": result.skipped_labels,
    }
