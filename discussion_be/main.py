# discussion_be/main.py

# ------------------------
# environment variables
# ------------------------
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

# ------------------------
# FastAPI, CORS middleware
# ------------------------
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from discussion_be.config import settings
from discussion_be.db.base import init_db

# ------------------------
# routers
# ------------------------
from discussion_be.routers import sessions as sessions_router
from discussion_be.routers import recordings as recordings_router
from discussion_be.routers import transcripts as transcripts_router
from discussion_be.routers import evaluations as evaluations_router
from discussion_be.routers import webhooks as webhooks_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# ------------------------
# 1) FastAPI app
#    - tables for local sqlite runs (Supabase schema is managed separately)
# ------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.app_env == "local":
        init_db()
    yield


app = FastAPI(title="Group Discussion API", lifespan=lifespan)

# ------------------------
# 2) CORS
#    - open for development
#    - restrict origins in production
# ------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------
# 3) routers
# ------------------------
app.include_router(sessions_router.router)
app.include_router(recordings_router.router)
app.include_router(transcripts_router.router)
app.include_router(evaluations_router.router)
app.include_router(webhooks_router.router)


# ------------------------
# 4) health check
# ------------------------
@app.get("/")
def root():
    return {"ok": True}
