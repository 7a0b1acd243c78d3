# discussion_be/models/transcripts.py
from datetime import datetime, timezone

from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, UniqueConstraint, JSON
from discussion_be.db.session import Base

class Transcript(Base):
    """One speech-to-text submission per (session, user). Never updated."""
    __tablename__ = "transcripts"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    # [{"start": float, "end": float, "text": str}, ...] offsets in seconds from start_at
    transcript = Column(JSON, nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint('session_id', 'user_id', name='uq_transcripts_session_user'),
    )
