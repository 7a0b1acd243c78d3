# discussion_be/models/rubric.py
# Rubric text and per-topic discussion prompts, maintained outside this service
from sqlalchemy import Column, Integer, Text, DateTime, func
from discussion_be.db.session import Base

class Rubric(Base):
    __tablename__ = "rubric"
    id = Column(Integer, primary_key=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

class TopicPrompt(Base):
    __tablename__ = "prompt"
    id = Column(Integer, primary_key=True)
    test_topic = Column(Text, nullable=False, unique=True)
    content = Column(Text, nullable=False)
