# discussion_be/deps.py
from functools import lru_cache

from fastapi import Depends

from discussion_be.db.base import SessionLocal
from discussion_be.services.evaluation import EvaluationPipeline
from discussion_be.services.notifications import Broadcaster, build_broadcaster
from discussion_be.services.readiness import ReadinessCoordinator
from discussion_be.services.recording import RecordingLifecycleManager
from discussion_be.services.transcripts import TranscriptCollector

# ----------------------------
# DB session
# ----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()  # commit included
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

# ----------------------------
# external collaborators (overridden in tests)
# ----------------------------
@lru_cache
def get_broadcaster() -> Broadcaster:
    return build_broadcaster()


def get_recording_manager() -> RecordingLifecycleManager:
    return RecordingLifecycleManager()


def get_readiness_coordinator(
    broadcaster: Broadcaster = Depends(get_broadcaster),
    recordings: RecordingLifecycleManager = Depends(get_recording_manager),
) -> ReadinessCoordinator:
    return ReadinessCoordinator(broadcaster=broadcaster, recordings=recordings)


def get_transcript_collector() -> TranscriptCollector:
    return TranscriptCollector()


def get_evaluation_pipeline() -> EvaluationPipeline:
    return EvaluationPipeline()
