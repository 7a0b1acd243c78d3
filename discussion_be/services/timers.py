# discussion_be/services/timers.py
# Phase deadlines are always re-derived from the anchors persisted on the session row,
# so every worker computes the same remaining time.
from datetime import datetime, timedelta, timezone
from typing import Optional

from discussion_be.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def phase_deadline(session) -> Optional[datetime]:
    status = session.status
    if status == "waiting":
        if session.expires_at is not None:
            return as_utc(session.expires_at)
        created = as_utc(session.created_at)
        return created + timedelta(seconds=settings.waiting_room_seconds) if created else None
    if status == "preparation":
        anchor = as_utc(session.preparation_start_time)
        return anchor + timedelta(seconds=settings.preparation_seconds) if anchor else None
    if status == "discussion":
        anchor = as_utc(session.discussion_start_time)
        return anchor + timedelta(seconds=settings.discussion_seconds) if anchor else None
    return None


def remaining_seconds(session, now: Optional[datetime] = None) -> Optional[int]:
    deadline = phase_deadline(session)
    if deadline is None:
        return None
    now = now or utcnow()
    return max(int((deadline - now).total_seconds()), 0)


def is_overdue(session, now: Optional[datetime] = None) -> bool:
    deadline = phase_deadline(session)
    if deadline is None:
        return False
    return (now or utcnow()) >= deadline
