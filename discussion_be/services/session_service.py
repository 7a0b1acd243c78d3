"""
Session business logic
- session creation (unique join code, AI seats)
- joining the waiting room
- status / remaining time derived from persisted anchors
- explicit expiry and discussion end
"""
import logging
import secrets
import string
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from discussion_be.config import settings
from discussion_be.models.participants import Participant
from discussion_be.models.sessions import DiscussionSession
from discussion_be.services import session_state as sm
from discussion_be.services.errors import AlreadyHandled, MissingFields, PreconditionFailed, SessionFull, SessionNotFound
from discussion_be.services.timers import remaining_seconds, utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_ATTEMPTS = 5
SPEAKER_LABELS = ("A", "B", "C", "D")
DEFAULT_TOPIC = "Group Discussion"
DEFAULT_INSTRUCTIONS = (
    "Please discuss the topic in English. Each participant should speak for about 2-3 minutes."
)


def generate_session_code(length: Optional[int] = None) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length or settings.session_code_length))


def list_participants(db: Session, session_id: str, include_ai: bool = True) -> List[Participant]:
    """Participants in join order."""
    stmt = select(Participant).where(Participant.session_id == session_id)
    if not include_ai:
        stmt = stmt.where(Participant.is_ai.is_(False))
    stmt = stmt.order_by(Participant.created_at, Participant.id)
    return list(db.execute(stmt).scalars())


def speaker_labels(db: Session, session_id: str) -> Dict[str, str]:
    """First four human participants, in join order, mapped to labels A-D (user_id -> label)."""
    humans = list_participants(db, session_id, include_ai=False)
    return {p.user_id: label for p, label in zip(humans, SPEAKER_LABELS)}


def get_session_or_404(db: Session, session_id: str) -> DiscussionSession:
    session = db.get(DiscussionSession, session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return session


def get_session_by_code(db: Session, code: str) -> DiscussionSession:
    session = db.execute(
        select(DiscussionSession).where(DiscussionSession.session_code == code)
    ).scalar_one_or_none()
    if session is None:
        raise SessionNotFound(code)
    return session


class SessionService:
    """Session lifecycle operations outside the readiness / transcript pipelines"""

    @staticmethod
    def create_session(
        db: Session,
        created_by: str,
        test_topic: Optional[str] = None,
        ai_count: int = 0,
        instructions: Optional[str] = None,
    ) -> DiscussionSession:
        """
        Create a waiting room with a fresh join code.

        Args:
            created_by: creator user id
            test_topic: discussion topic (defaults to "Group Discussion")
            ai_count: number of AI seats, 0..MAX_PARTICIPANTS-1
            instructions: free text shown to participants

        Returns:
            the persisted session

        Raises:
            MissingFields, PreconditionFailed
        """
        if not created_by:
            raise MissingFields(["created_by"])
        if ai_count < 0 or ai_count >= settings.max_participants:
            raise PreconditionFailed(f"ai_count must be between 0 and {settings.max_participants - 1}")

        session = None
        for attempt in range(CODE_ATTEMPTS):
            now = utcnow()
            candidate = DiscussionSession(
                session_code=generate_session_code(),
                created_by=created_by,
                status=sm.WAITING,
                ai_count=ai_count,
                test_topic=test_topic or DEFAULT_TOPIC,
                instructions=instructions or DEFAULT_INSTRUCTIONS,
                created_at=now,
                expires_at=now + timedelta(seconds=settings.waiting_room_seconds),
            )
            db.add(candidate)
            try:
                db.commit()
            except IntegrityError:
                # duplicate session_code, try another one
                db.rollback()
                logger.warning("[SESSION] duplicate session_code on attempt %d, retrying", attempt + 1)
                continue
            session = candidate
            break

        if session is None:
            raise PreconditionFailed("failed to generate a unique session code")

        # AI seats never block readiness
        for index in range(ai_count):
            db.add(Participant(
                session_id=session.id,
                user_id=None,
                username=f"AI-{index + 1}",
                is_ai=True,
                ready=True,
            ))
        db.commit()
        db.refresh(session)

        logger.info("[SESSION] created session=%s code=%s ai_count=%d", session.id, session.session_code, ai_count)
        return session

    @staticmethod
    def join_session(db: Session, code: str, user_id: str, username: Optional[str] = None) -> Dict:
        """
        Add a human participant to a waiting room.

        The join that fills the room moves it to preparation.

        Raises:
            SessionNotFound, SessionFull, PreconditionFailed, AlreadyHandled (already joined)
        """
        missing = [name for name, value in (("code", code), ("user_id", user_id)) if not value]
        if missing:
            raise MissingFields(missing)

        session = get_session_by_code(db, code)
        sm.expire_if_due(db, session)

        participants = list_participants(db, session.id)
        if any(p.user_id == user_id for p in participants):
            raise AlreadyHandled("already joined")

        if session.status != sm.WAITING:
            raise PreconditionFailed(f"session is {session.status}, joining is closed")

        if len(participants) >= settings.max_participants:
            raise SessionFull(code, settings.max_participants)

        participant = Participant(session_id=session.id, user_id=user_id, username=username, is_ai=False)
        db.add(participant)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise AlreadyHandled("already joined")

        # seats go by insertion order; a concurrent joiner may have taken the last one
        position = db.execute(
            select(func.count()).select_from(Participant).where(
                Participant.session_id == session.id, Participant.id < participant.id
            )
        ).scalar_one()
        if position >= settings.max_participants:
            db.delete(participant)
            db.commit()
            raise SessionFull(code, settings.max_participants)

        seated = list_participants(db, session.id)
        count = min(len(seated), settings.max_participants)
        started_preparation = False
        if count == settings.max_participants:
            started_preparation = SessionService.start_preparation(db, session.id)

        logger.info("[SESSION] user=%s joined session=%s (%d/%d)", user_id, session.id, count, settings.max_participants)
        return {
            "session_id": session.id,
            "participant_count": count,
            "preparation_started": started_preparation,
        }

    @staticmethod
    def start_preparation(db: Session, session_id: str) -> bool:
        """waiting -> preparation, stamping the preparation anchor. False if already moved."""
        return sm.transition(
            db,
            session_id,
            sm.PREPARATION,
            expected=sm.WAITING,
            values={"preparation_start_time": utcnow()},
        )

    @staticmethod
    def get_status(db: Session, code: str) -> Dict:
        """Current phase and time remaining, applying lazy expiry first."""
        session = get_session_by_code(db, code)
        sm.expire_if_due(db, session)

        participants = list_participants(db, session.id)
        return {
            "session_id": session.id,
            "session_code": session.session_code,
            "test_topic": session.test_topic,
            "instructions": session.instructions,
            "status": session.status,
            "created_at": session.created_at,
            "expires_at": session.expires_at,
            "preparation_start_time": session.preparation_start_time,
            "discussion_start_time": session.discussion_start_time,
            "remaining": remaining_seconds(session),
            "transcript_merged": bool(session.transcript_merged),
            "participants": [
                {
                    "user_id": p.user_id,
                    "username": p.username,
                    "is_ai": p.is_ai,
                    "ready": p.ready,
                    "joined_at": p.created_at,
                }
                for p in participants
            ],
        }

    @staticmethod
    def expire_session(db: Session, code: str) -> bool:
        """Explicit expiry; only legal from waiting / preparation."""
        session = get_session_by_code(db, code)
        if session.status == sm.EXPIRED:
            raise AlreadyHandled("session already expired")
        return sm.transition(db, session.id, sm.EXPIRED)

    @staticmethod
    def end_discussion(db: Session, session_id: str, recordings=None) -> Dict:
        """
        Stop both recordings (independently) and move discussion -> evaluation.
        Safe to call repeatedly.
        """
        get_session_or_404(db, session_id)

        stop_results = {}
        if recordings is not None:
            for mode, outcome in recordings.stop_session_recordings(db, session_id).items():
                stop_results[mode] = {
                    "ok": outcome.ok,
                    "already_stopped": outcome.already_stopped,
                    "error": outcome.error,
                }

        moved = sm.advance_if(db, session_id, sm.DISCUSSION, sm.EVALUATION)
        return {
            "session_id": session_id,
            "status": sm.get_status(db, session_id),
            "transitioned": moved,
            "recordings": stop_results,
        }
