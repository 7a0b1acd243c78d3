# discussion_be/services/session_state.py
"""
Session lifecycle state machine.

    waiting -> preparation -> discussion -> evaluation -> completed
    waiting | preparation -> expired

Every status write is a single conditional UPDATE keyed on the expected
current status. When two callers race for the same transition only one
UPDATE matches a row; the other sees rowcount 0 and gets False back,
which callers treat as "already transitioned".
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from discussion_be.models.sessions import DiscussionSession
from discussion_be.services.errors import InvalidTransition, SessionNotFound
from discussion_be.services.timers import is_overdue, utcnow

logger = logging.getLogger(__name__)

WAITING = "waiting"
PREPARATION = "preparation"
DISCUSSION = "discussion"
EVALUATION = "evaluation"
COMPLETED = "completed"
EXPIRED = "expired"

STATUSES = (WAITING, PREPARATION, DISCUSSION, EVALUATION, COMPLETED, EXPIRED)

ALLOWED_TRANSITIONS = {
    WAITING: {PREPARATION, EXPIRED},
    PREPARATION: {DISCUSSION, EXPIRED},
    DISCUSSION: {EVALUATION},
    EVALUATION: {COMPLETED},
    COMPLETED: set(),
    EXPIRED: set(),
}


def can_transition(current: Optional[str], target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def get_status(db: Session, session_id: str) -> str:
    status = db.execute(
        select(DiscussionSession.status).where(DiscussionSession.id == session_id)
    ).scalar_one_or_none()
    if status is None:
        raise SessionNotFound(session_id)
    return status


def transition(
    db: Session,
    session_id: str,
    target: str,
    *,
    expected: Optional[str] = None,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Move a session to `target`.

    expected: the status the caller believes is current. When omitted the
    current status is read first, and the write is still conditional on it.
    values: extra columns written in the same UPDATE (anchor timestamps).

    Raises InvalidTransition when (current, target) is not an allowed edge.
    Returns True when this call performed the write, False when another
    caller got there first.
    """
    current = expected if expected is not None else get_status(db, session_id)
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

    stmt = (
        update(DiscussionSession)
        .where(DiscussionSession.id == session_id, DiscussionSession.status == current)
        .values(status=target, updated_at=utcnow(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()

    if result.rowcount != 1:
        logger.info("[STATE] session=%s %s -> %s already applied elsewhere", session_id, current, target)
        return False

    logger.info("[STATE] session=%s %s -> %s", session_id, current, target)
    return True


def advance_if(db: Session, session_id: str, current: str, target: str, **values) -> bool:
    """Conditional move that is a no-op (False) unless the session is in `current`."""
    status = get_status(db, session_id)
    if status != current:
        return False
    return transition(db, session_id, target, expected=current, values=values or None)


def expire_if_due(db: Session, session: DiscussionSession, now=None) -> bool:
    """
    Lazily expire a waiting room whose deadline has passed.

    An overdue preparation phase is not expired here: it moves on to
    discussion through the readiness check.
    """
    if session.status != WAITING:
        return False
    if not is_overdue(session, now):
        return False
    expired = transition(db, session.id, EXPIRED, expected=WAITING)
    if expired:
        logger.info("[STATE] session=%s expired after waiting room deadline", session.id)
    db.refresh(session)
    return expired
