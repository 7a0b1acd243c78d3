# discussion_be/models/evaluations.py
from sqlalchemy import Column, BigInteger, Integer, SmallInteger, String, Text, DateTime, ForeignKey, UniqueConstraint, func
from discussion_be.db.session import Base

class Evaluation(Base):
    __tablename__ = "evaluation"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    participant = Column(String(1), nullable=False)  # A|B|C|D

    # 0-7 per rubric category
    pronunciation_delivery_score = Column(SmallInteger, nullable=False)
    pronunciation_delivery_comment = Column(Text, nullable=True)
    communication_strategies_score = Column(SmallInteger, nullable=False)
    communication_strategies_comment = Column(Text, nullable=True)
    vocabulary_patterns_score = Column(SmallInteger, nullable=False)
    vocabulary_patterns_comment = Column(Text, nullable=True)
    ideas_organization_score = Column(SmallInteger, nullable=False)
    ideas_organization_comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint('session_id', 'user_id', 'participant', name='uq_evaluation_session_user_participant'),
    )
