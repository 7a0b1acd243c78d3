# discussion_be/services/transcripts.py
"""
Transcript collection and merge.

Each human participant submits the speech segments of their own recording
(offsets in seconds relative to their own start_at). Once the number of
submissions equals the number of human participants, the caller that
flips sessions.transcript_merged false -> true owns the merge; every other
caller backs off. The merged document is persisted before evaluation is
dispatched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from discussion_be.models.merged_transcripts import MergedTranscript
from discussion_be.models.participants import Participant
from discussion_be.models.sessions import DiscussionSession
from discussion_be.models.transcripts import Transcript
from discussion_be.services import session_state as sm
from discussion_be.services.errors import AlreadyHandled, MissingFields, PreconditionFailed
from discussion_be.services.session_service import get_session_or_404, list_participants, speaker_labels
from discussion_be.services.timers import as_utc

logger = logging.getLogger(__name__)

# SubmitOutcome.status values
STORED = "stored"
WAITING_FOR_OTHERS = "waiting"
ALREADY_MERGED = "already_merged"
MERGING_ELSEWHERE = "merging_elsewhere"
MERGED = "merged"


@dataclass(frozen=True)
class Submission:
    label: str
    start_at: datetime
    segments: Sequence[Mapping[str, Any]]


@dataclass
class SubmitOutcome:
    session_id: str
    status: str
    stored: bool = False
    expected_count: int = 0
    submitted_count: int = 0

    @property
    def merged(self) -> bool:
        """True only for the single caller that ran the merge."""
        return self.status == MERGED


def merge_submissions(submissions: Sequence[Submission]) -> str:
    """
    Interleave every segment by absolute time (start_at + segment start).

    Pure function: the sort is stable, so equal timestamps keep submission
    order and then segment order. Every segment becomes one line, blank text included.
    """
    pooled = []
    for submission in submissions:
        anchor = as_utc(submission.start_at)
        for segment in submission.segments:
            text = str(segment.get("text") or "")
            offset = float(segment.get("start") or 0.0)
            pooled.append((anchor + timedelta(seconds=offset), submission.label, text))

    pooled.sort(key=lambda item: item[0])
    return "\n".join(f"{label}: {text}" for _, label, text in pooled)


class TranscriptMerger:

    @staticmethod
    def load_submissions(db: Session, session_id: str) -> List[Submission]:
        rows = db.execute(
            select(Transcript)
            .where(Transcript.session_id == session_id)
            .order_by(Transcript.created_at, Transcript.id)
        ).scalars().all()

        labels = speaker_labels(db, session_id)
        names = {p.user_id: p.username for p in list_participants(db, session_id, include_ai=False)}
        return [
            Submission(
                label=labels.get(row.user_id) or names.get(row.user_id) or row.user_id,
                start_at=row.start_at,
                segments=row.transcript or [],
            )
            for row in rows
        ]

    @staticmethod
    def merge(db: Session, session_id: str) -> MergedTranscript:
        merged_text = merge_submissions(TranscriptMerger.load_submissions(db, session_id))

        merged = MergedTranscript(session_id=session_id, merged_transcript=merged_text)
        db.add(merged)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise AlreadyHandled("merged transcript already exists")
        db.refresh(merged)

        logger.info("[MERGE] session=%s merged %d lines", session_id, merged_text.count("\n") + 1 if merged_text else 0)
        return merged


class TranscriptCollector:

    def __init__(self, merger: Optional[TranscriptMerger] = None):
        self.merger = merger or TranscriptMerger()

    def submit(
        self,
        db: Session,
        session_id: str,
        user_id: str,
        segments: Optional[List[Dict[str, Any]]],
        start_at: Optional[datetime],
    ) -> SubmitOutcome:
        """
        Store one participant's segments, then run the merge check.

        A repeated submission from the same user keeps the first copy
        (submissions are immutable) and still re-runs the check.

        Raises:
            MissingFields, SessionNotFound, PreconditionFailed
        """
        missing = [
            name
            for name, value in (
                ("session_id", session_id),
                ("user_id", user_id),
                ("transcript", segments),
                ("startAt", start_at),
            )
            if value is None or value == ""
        ]
        if missing:
            raise MissingFields(missing)

        get_session_or_404(db, session_id)
        is_member = db.execute(
            select(Participant.id).where(
                Participant.session_id == session_id,
                Participant.user_id == user_id,
                Participant.is_ai.is_(False),
            )
        ).first()
        if is_member is None:
            raise PreconditionFailed(f"user {user_id} is not a participant of session {session_id}")

        # 1) durable before anything counts it
        db.add(Transcript(session_id=session_id, user_id=user_id, transcript=list(segments), start_at=start_at))
        try:
            db.commit()
            stored = True
            logger.info("[TRANSCRIPT] session=%s user=%s stored %d segments", session_id, user_id, len(segments))
        except IntegrityError:
            db.rollback()
            stored = False
            logger.info("[TRANSCRIPT] session=%s user=%s already submitted, keeping first copy", session_id, user_id)

        outcome = self.check_merge(db, session_id)
        outcome.stored = stored
        return outcome

    def check_merge(self, db: Session, session_id: str) -> SubmitOutcome:
        """Merge trigger. Safe under concurrent and repeated calls."""
        # 2) already merged? nothing to do
        merged_flag = db.execute(
            select(DiscussionSession.transcript_merged).where(DiscussionSession.id == session_id)
        ).scalar_one_or_none()
        if merged_flag is None:
            get_session_or_404(db, session_id)
        if merged_flag:
            return SubmitOutcome(session_id=session_id, status=ALREADY_MERGED)

        # 3) expected vs submitted
        expected = db.execute(
            select(func.count()).select_from(Participant).where(
                Participant.session_id == session_id, Participant.is_ai.is_(False)
            )
        ).scalar_one()
        submitted = db.execute(
            select(func.count(func.distinct(Transcript.user_id))).where(Transcript.session_id == session_id)
        ).scalar_one()

        outcome = SubmitOutcome(
            session_id=session_id,
            status=WAITING_FOR_OTHERS,
            expected_count=expected,
            submitted_count=submitted,
        )
        if expected == 0 or submitted != expected:
            logger.info("[MERGE] session=%s %d/%d transcripts, waiting", session_id, submitted, expected)
            return outcome

        # 4) compare-and-swap on the merge flag
        result = db.execute(
            update(DiscussionSession)
            .where(DiscussionSession.id == session_id, DiscussionSession.transcript_merged.is_(False))
            .values(transcript_merged=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            logger.info("[MERGE] session=%s another request owns the merge", session_id)
            outcome.status = MERGING_ELSEWHERE
            return outcome

        try:
            self.merger.merge(db, session_id)
        except AlreadyHandled:
            outcome.status = ALREADY_MERGED
            return outcome
        except Exception:
            # release the flag so a retried delivery can merge
            db.rollback()
            db.execute(
                update(DiscussionSession)
                .where(DiscussionSession.id == session_id, DiscussionSession.transcript_merged.is_(True))
                .values(transcript_merged=False)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.exception("[MERGE] session=%s merge failed, flag released", session_id)
            raise

        sm.advance_if(db, session_id, sm.DISCUSSION, sm.EVALUATION)
        outcome.status = MERGED
        return outcome


def get_merged_transcript(db: Session, session_id: str) -> Optional[MergedTranscript]:
    return db.execute(
        select(MergedTranscript).where(MergedTranscript.session_id == session_id)
    ).scalar_one_or_none()
