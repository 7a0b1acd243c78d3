# discussion_be/db/session.py
# SQLAlchemy setup. The URL comes from DATABASE_URL in .env.

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from discussion_be.config import settings

# Supabase Postgres URL (e.g. postgresql+psycopg2://...) or sqlite for local runs
DATABASE_URL = settings.database_url

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # request handlers run on a thread pool; wait on the file lock instead of failing
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "pool_pre_ping": True,  # detect dropped connections
        "pool_size": 30,
        "max_overflow": 0,
        "pool_timeout": 30,     # seconds to wait when the pool is exhausted
    }


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
