# discussion_be/models/participants.py
from datetime import datetime, timezone

from sqlalchemy import Column, BigInteger, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
from discussion_be.db.session import Base

class Participant(Base):
    __tablename__ = "participants"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)  # null for AI participants
    username = Column(String(100), nullable=True)
    is_ai = Column(Boolean, nullable=False, default=False)
    ready = Column(Boolean, nullable=False, default=False)
    # join order (created_at, id) drives the A-D speaker labels
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint('session_id', 'user_id', name='uq_participants_session_user'),
        Index('ix_participants_session_id_created_at', 'session_id', 'created_at'),
    )
