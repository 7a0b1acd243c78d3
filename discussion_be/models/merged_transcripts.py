# discussion_be/models/merged_transcripts.py
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, ForeignKey, func
from discussion_be.db.session import Base

class MergedTranscript(Base):
    __tablename__ = "merged_transcripts"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, unique=True)
    merged_transcript = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
