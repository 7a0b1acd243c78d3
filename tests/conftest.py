import json
import os
import sys
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# the engine is built at import time, so the URL must exist first
_TMP = tempfile.TemporaryDirectory()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP.name, 'test.db')}"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from discussion_be.db.base import Base, SessionLocal, engine
from discussion_be.models.participants import Participant
from discussion_be.models.rubric import Rubric
from discussion_be.models.sessions import DiscussionSession
from discussion_be.schemas.evaluation import CATEGORIES
from discussion_be.services.errors import RecordingProviderError, RecordingStopError
from discussion_be.services.recording import RecordingLifecycleManager

T0 = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def tmp_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# ----------------------------
# fakes for the external services
# ----------------------------
class RecordingBroadcaster:
    def __init__(self):
        self.messages = []
        self._lock = threading.Lock()

    def publish(self, topic, event, payload):
        with self._lock:
            self.messages.append((topic, event, payload))
        return True


class FakeRecordingClient:
    """Counts provider calls. Modes listed in fail_start / fail_stop raise like the real API."""

    def __init__(self, fail_start=(), fail_stop=()):
        self.fail_start = set(fail_start)
        self.fail_stop = set(fail_stop)
        self.calls = []
        self._lock = threading.Lock()
        self._seq = 0

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)
            self._seq += 1
            return self._seq

    def count(self, name, mode=None):
        return sum(1 for c in self.calls if c[0] == name and (mode is None or mode in c))

    def acquire(self, cname, uid):
        n = self._record("acquire", cname, uid)
        return f"res-{n}"

    def start(self, resource_id, cname, uid, mode, token=None):
        self._record("start", resource_id, mode)
        if mode in self.fail_start:
            raise RecordingProviderError("start failed", status_code=500, details={"code": 2})
        return f"sid-{resource_id}"

    def stop(self, resource_id, sid, mode, cname, uid):
        self._record("stop", resource_id, sid, mode)
        if mode in self.fail_stop:
            raise RecordingStopError("stop failed", status_code=404, details={"code": 404})
        return {"serverResponse": {"fileList": [{"fileName": f"{cname}/{mode}.m3u8"}]}}


def scoring_json(labels, score=5):
    return json.dumps({
        "participants": {
            label: {name: {"score": score, "comment": f"{label} {name}"} for name, _ in CATEGORIES}
            for label in labels
        }
    })


class FakeScorer:
    def __init__(self, response=None):
        self.response = response
        self.calls = []

    def score(self, topic, transcript, rubric, labels):
        self.calls.append({"topic": topic, "transcript": transcript, "rubric": rubric, "labels": list(labels)})
        if self.response is not None:
            return self.response
        return scoring_json(labels)


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def recording_client():
    return FakeRecordingClient()


@pytest.fixture
def recordings(recording_client):
    return RecordingLifecycleManager(client=recording_client)


@pytest.fixture
def scorer():
    return FakeScorer()


# ----------------------------
# data helpers
# ----------------------------
def seed_session(db, humans=4, ai=0, status="waiting", code="ABC123", ready=False, **fields):
    session = DiscussionSession(
        session_code=code,
        created_by="creator",
        status=status,
        ai_count=ai,
        test_topic=fields.pop("test_topic", "Should homework be banned?"),
        instructions="Discuss in English.",
        created_at=fields.pop("created_at", None) or datetime.now(timezone.utc),
        **fields,
    )
    db.add(session)
    db.commit()

    for i in range(humans):
        db.add(Participant(
            session_id=session.id,
            user_id=f"user-{i + 1}",
            username=f"Student {i + 1}",
            is_ai=False,
            ready=ready,
            created_at=T0 + timedelta(seconds=i + 1),
        ))
    for i in range(ai):
        db.add(Participant(
            session_id=session.id,
            user_id=None,
            username=f"AI-{i + 1}",
            is_ai=True,
            ready=True,
            created_at=T0 + timedelta(seconds=humans + i + 1),
        ))
    db.commit()
    db.refresh(session)
    return session


def seed_rubric(db, content="Level 7: fluent and precise. Level 0: no response."):
    db.add(Rubric(content=content))
    db.commit()


@pytest.fixture
def client(broadcaster, recordings, scorer):
    from fastapi.testclient import TestClient

    from discussion_be import deps
    from discussion_be.main import app
    from discussion_be.services.evaluation import EvaluationPipeline

    app.dependency_overrides[deps.get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[deps.get_recording_manager] = lambda: recordings
    app.dependency_overrides[deps.get_evaluation_pipeline] = lambda: EvaluationPipeline(scorer=scorer)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
