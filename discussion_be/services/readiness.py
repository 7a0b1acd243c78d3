# discussion_be/services/readiness.py
"""
Readiness synchronization.

Each human participant marks ready; every mark re-runs the quorum check.
When all humans are ready, or the preparation time is over, the session
moves preparation -> discussion with a single conditional write, which
also stamps discussion_start_time. Only the caller whose write matched a
row broadcasts and starts the recordings; concurrent duplicates observe
rowcount 0 and stay silent.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from discussion_be.models.participants import Participant
from discussion_be.services import session_state as sm
from discussion_be.services.errors import MissingFields, PreconditionFailed
from discussion_be.services.notifications import Broadcaster, LogBroadcaster, session_topic
from discussion_be.services.session_service import get_session_or_404, list_participants
from discussion_be.services.timers import is_overdue, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ReadinessOutcome:
    session_id: str
    status: str
    ready_count: int
    expected_count: int
    all_ready: bool
    started: bool = False
    discussion_start_time: Optional[datetime] = None
    message: str = ""


class ReadinessCoordinator:

    def __init__(self, broadcaster: Optional[Broadcaster] = None, recordings=None):
        self.broadcaster = broadcaster or LogBroadcaster()
        self.recordings = recordings

    def mark_ready(self, db: Session, session_id: str, user_id: str) -> ReadinessOutcome:
        missing = [name for name, value in (("session_id", session_id), ("user_id", user_id)) if not value]
        if missing:
            raise MissingFields(missing)

        result = db.execute(
            update(Participant)
            .where(
                Participant.session_id == session_id,
                Participant.user_id == user_id,
                Participant.is_ai.is_(False),
            )
            .values(ready=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 0:
            get_session_or_404(db, session_id)
            raise PreconditionFailed(f"user {user_id} is not a participant of session {session_id}")

        logger.info("[READY] session=%s user=%s marked ready", session_id, user_id)
        return self.check_quorum(db, session_id)

    def check_quorum(self, db: Session, session_id: str) -> ReadinessOutcome:
        session = get_session_or_404(db, session_id)
        humans = list_participants(db, session_id, include_ai=False)
        expected = len(humans)
        ready = sum(1 for p in humans if p.ready)
        all_ready = expected > 0 and ready == expected

        outcome = ReadinessOutcome(
            session_id=session_id,
            status=session.status,
            ready_count=ready,
            expected_count=expected,
            all_ready=all_ready,
            discussion_start_time=session.discussion_start_time,
        )
        logger.info("[READY] session=%s %d/%d ready status=%s", session_id, ready, expected, session.status)

        # an ended preparation phase starts the discussion without full readiness
        time_up = session.status == sm.PREPARATION and is_overdue(session)
        if not all_ready and not time_up:
            outcome.message = "Not all participants are ready yet."
            return outcome

        if session.status != sm.PREPARATION:
            outcome.message = (
                "Session already in discussion mode."
                if session.status == sm.DISCUSSION
                else f"Session is {session.status}; nothing to start."
            )
            return outcome

        start_time = utcnow()
        won = sm.transition(
            db,
            session_id,
            sm.DISCUSSION,
            expected=sm.PREPARATION,
            values={"discussion_start_time": start_time},
        )
        if not won:
            # a concurrent ready call started the discussion
            db.refresh(session)
            outcome.status = session.status
            outcome.discussion_start_time = session.discussion_start_time
            outcome.message = "Session already in discussion mode."
            return outcome

        self.broadcaster.publish(
            session_topic(session_id),
            "status",
            {"status": "ready", "discussion_start_time": start_time.isoformat()},
        )

        if self.recordings is not None:
            handles = self.recordings.start_session_recordings(db, session)
            failed = [mode for mode, handle in handles.items() if not handle.started]
            if failed:
                logger.warning("[READY] session=%s discussion continues without recording: %s", session_id, failed)

        outcome.status = sm.DISCUSSION
        outcome.started = True
        outcome.discussion_start_time = start_time
        outcome.message = (
            "All participants ready. Discussion started."
            if all_ready
            else "Preparation time is over. Discussion started."
        )
        return outcome
