"""
Shared DB base / session factory.
engine, SessionLocal and Base are defined once in discussion_be.db.session.
Importing the models here registers every table on Base.metadata.
"""
from discussion_be.db.session import engine, SessionLocal, Base

from discussion_be.models import sessions, participants, transcripts, merged_transcripts, evaluations, rubric  # noqa: F401

__all__ = ["engine", "SessionLocal", "Base", "init_db"]


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
