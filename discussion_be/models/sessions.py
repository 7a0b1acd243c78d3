# discussion_be/models/sessions.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Index, func
from discussion_be.db.session import Base

class DiscussionSession(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_code = Column(String(16), nullable=False, unique=True, index=True)
    created_by = Column(String(64), nullable=False)
    # waiting|preparation|discussion|evaluation|completed|expired
    status = Column(String(20), nullable=False, default="waiting")
    ai_count = Column(Integer, nullable=False, default=0)
    test_topic = Column(Text, nullable=False)
    instructions = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True)
    preparation_start_time = Column(DateTime(timezone=True), nullable=True)
    discussion_start_time = Column(DateTime(timezone=True), nullable=True)

    # merge trigger guard, flipped false -> true exactly once
    transcript_merged = Column(Boolean, nullable=False, default=False)

    # recording handles: composite (mix) and individual
    cloud_recording_resource_id = Column(Text, nullable=True)
    cloud_recording_sid = Column(String(64), nullable=True)
    individual_recording_resource_id = Column(Text, nullable=True)
    individual_recording_sid = Column(String(64), nullable=True)

    __table_args__ = (
        Index('ix_sessions_status_created_at', 'status', 'created_at'),
    )
