from datetime import datetime, timedelta, timezone

from sqlalchemy import inspect, select

from conftest import seed_rubric, seed_session
from discussion_be.db.base import SessionLocal
from discussion_be.models.sessions import DiscussionSession


def _session(code):
    with SessionLocal() as db:
        return db.execute(select(DiscussionSession).where(DiscussionSession.session_code == code)).scalar_one()


def test_health(client):
    assert client.get("/").json() == {"ok": True}


def test_create_join_until_preparation(client):
    res = client.post("/api/sessions/create", json={"user_id": "host", "testTopic": "School uniforms", "aiCount": 1})
    assert res.status_code == 201
    code = res.json()["session_code"]
    session_id = res.json()["session_id"]
    assert len(code) == 6

    for i in range(1, 4):
        res = client.post("/api/sessions/join", json={"code": code, "user_id": f"u{i}", "username": f"U{i}"})
        assert res.status_code == 200
    assert res.json()["preparation_started"] is True

    status = client.get("/api/sessions/status", params={"code": code}).json()
    assert status["session_id"] == session_id
    assert status["status"] == "preparation"
    assert status["test_topic"] == "School uniforms"
    assert 0 < status["remaining"] <= 600
    assert [p["is_ai"] for p in status["participants"]] == [True, False, False, False]

    # room is full and no longer waiting
    res = client.post("/api/sessions/join", json={"code": code, "user_id": "late", "username": "Late"})
    assert res.status_code == 400


def test_join_errors(client):
    res = client.post("/api/sessions/join", json={"code": "NOPE00", "user_id": "u1"})
    assert res.status_code == 404

    res = client.post("/api/sessions/join", json={"user_id": "u1"})
    assert res.status_code == 400
    assert res.json()["detail"]["fields"] == ["code"]

    code = client.post("/api/sessions/create", json={"user_id": "host"}).json()["session_code"]
    client.post("/api/sessions/join", json={"code": code, "user_id": "u1"})
    res = client.post("/api/sessions/join", json={"code": code, "user_id": "u1"})
    assert res.status_code == 200
    assert res.json()["message"] == "already_done"


def test_expire_only_before_discussion(client):
    code = client.post("/api/sessions/create", json={"user_id": "host"}).json()["session_code"]

    assert client.post("/api/sessions/expire", json={"code": code}).json()["status"] == "expired"
    assert client.post("/api/sessions/expire", json={"code": code}).json()["message"] == "already_done"

    with SessionLocal() as db:
        seed_session(db, status="discussion", code="DISC01")
    res = client.post("/api/sessions/expire", json={"code": "DISC01"})
    assert res.status_code == 409


def test_ready_flow_broadcasts_and_records(client, broadcaster, recording_client):
    with SessionLocal() as db:
        session_id = seed_session(db, humans=2, status="preparation", code="READY1").id

    first = client.post("/api/sessions/mark-ready", json={"session_id": session_id, "user_id": "user-1"}).json()
    assert first["started"] is False
    second = client.post("/api/sessions/mark-ready", json={"session_id": session_id, "user_id": "user-2"}).json()
    assert second["started"] is True
    assert second["status"] == "discussion"

    assert len(broadcaster.messages) == 1
    assert recording_client.count("start") == 2

    # redelivered webhook is informational
    hook = client.post("/api/webhook/start-discussion", json={"record": {"session_id": session_id}}).json()
    assert hook["started"] is False
    assert len(broadcaster.messages) == 1


def test_start_preparation_then_ready_quorum(client, broadcaster):
    with SessionLocal() as db:
        session_id = seed_session(db, humans=2, status="waiting", code="EARLY1", ready=True).id

    res = client.post(f"/api/sessions/{session_id}/start-preparation").json()

    assert res["transitioned"] is True
    assert res["started"] is True
    assert _session("EARLY1").status == "discussion"


def test_end_discussion_stops_recordings_once(client, recordings, recording_client):
    with SessionLocal() as db:
        session = seed_session(db, humans=2, status="discussion", code="END001")
        recordings.start_session_recordings(db, session)
        session_id = session.id

    first = client.post(f"/api/sessions/{session_id}/end-discussion").json()
    second = client.post(f"/api/sessions/{session_id}/end-discussion").json()

    assert first["transitioned"] is True
    assert first["status"] == "evaluation"
    assert all(r["ok"] and not r["already_stopped"] for r in first["recordings"].values())
    assert second["transitioned"] is False
    assert all(r["already_stopped"] for r in second["recordings"].values())
    assert recording_client.count("stop") == 2


def test_recording_endpoints(client, recording_client):
    with SessionLocal() as db:
        session_id = seed_session(db, status="discussion", code="RECAPI").id

    started = client.post("/api/recordings/start", json={"session_id": session_id, "mode": "individual"}).json()
    assert started["started"] == ["individual"]

    stop = client.post("/api/recordings/stop", json={"session_id": session_id, "mode": "individual"}).json()
    assert stop["message"] == "stopped"
    again = client.post("/api/recordings/stop", json={"session_id": session_id, "mode": "individual"}).json()
    assert again["message"] == "already_stopped"
    assert recording_client.count("stop") == 1

    res = client.post("/api/recordings/stop", json={"session_id": session_id, "mode": "stereo"})
    assert res.status_code == 400


def test_recording_stop_failure_maps_to_502(client, recording_client):
    recording_client.fail_stop = {"composite"}
    with SessionLocal() as db:
        session_id = seed_session(db, status="discussion", code="FAIL01").id
    client.post("/api/recordings/start", json={"session_id": session_id, "mode": "composite"})

    res = client.post("/api/recordings/stop", json={"session_id": session_id, "mode": "composite"})

    assert res.status_code == 502
    assert res.json()["detail"]["provider"] == {"code": 404}


def test_transcripts_merge_and_evaluate_end_to_end(client, scorer):
    with SessionLocal() as db:
        seed_rubric(db)
        session_id = seed_session(db, humans=2, status="discussion", code="E2E001").id

    body = {"session_id": session_id, "startAt": "2025-03-01T10:00:00Z"}
    first = client.post("/api/transcripts/submit", json={
        **body, "user_id": "user-1", "transcript": [{"start": 4, "end": 5, "text": "Second"}],
    }).json()
    assert first["status"] == "waiting"
    last = client.post("/api/transcripts/submit", json={
        **body, "user_id": "user-2", "transcript": [{"start": 1, "end": 2, "text": "First"}],
    }).json()
    assert last["status"] == "merged"
    assert last["evaluation_dispatched"] is True

    merged = client.get(f"/api/sessions/{session_id}/merged-transcript").json()
    assert merged["merged_transcript"] == "B: First\nA: Second"

    # background scoring ran after the response
    evaluations = client.get(f"/api/sessions/{session_id}/evaluations").json()
    assert evaluations["status"] == "completed"
    assert [e["participant"] for e in evaluations["evaluations"]] == ["A", "B"]
    assert len(scorer.calls) == 1

    # redelivered webhooks are benign
    hook = client.post("/api/webhook/merge-transcript", json={"record": {"session_id": session_id}}).json()
    assert hook["status"] == "already_merged"
    hook = client.post("/api/webhook/evaluate", json={"record": {"session_id": session_id}}).json()
    assert hook["message"] == "already_done"
    assert len(scorer.calls) == 1


def test_submit_missing_fields(client):
    res = client.post("/api/transcripts/submit", json={"session_id": "s1", "user_id": "u1"})

    assert res.status_code == 400
    assert res.json()["detail"] == {"message": "missing_fields", "fields": ["transcript", "startAt"]}


def test_trigger_evaluation_reports_scoring_failure(client, scorer):
    scorer.response = "garbage"
    with SessionLocal() as db:
        seed_rubric(db)
        session_id = seed_session(db, humans=1, status="discussion", code="TRIG01").id

    client.post("/api/transcripts/submit", json={
        "session_id": session_id, "user_id": "user-1", "startAt": "2025-03-01T10:00:00Z",
        "transcript": [{"start": 0, "text": "hello"}],
    })
    res = client.post("/api/evaluate/trigger", json={"session_id": session_id})
    assert res.status_code == 502

    scorer.response = None
    res = client.post("/api/evaluate/trigger", json={"session_id": session_id})
    assert res.status_code == 200
    assert [e["participant"] for e in res.json()["evaluations"]] == ["A"]


def test_webhook_requires_session_id(client):
    res = client.post("/api/webhook/evaluate", json={"record": {}})
    assert res.status_code == 400
    assert res.json()["detail"]["fields"] == ["record.session_id"]


def test_starting_recordings_twice_keeps_one_recording_per_mode(client, recording_client):
    with SessionLocal() as db:
        session_id = seed_session(db, status="discussion", code="TWICE1").id

    first = client.post("/api/recordings/start", json={"session_id": session_id}).json()
    second = client.post("/api/recordings/start", json={"session_id": session_id}).json()

    assert sorted(second["started"]) == ["composite", "individual"]
    assert all(r["already_running"] for r in second["recordings"].values())
    assert second["recordings"]["composite"]["sid"] == first["recordings"]["composite"]["sid"]
    assert recording_client.count("start") == 2

    client.post(f"/api/sessions/{session_id}/end-discussion")
    assert recording_client.count("stop") == recording_client.count("start")


def _overdue_preparation(code):
    anchor = datetime.now(timezone.utc) - timedelta(seconds=601)
    with SessionLocal() as db:
        return seed_session(db, humans=2, status="preparation", code=code, preparation_start_time=anchor).id


def test_ended_preparation_status_poll_then_ready(client, broadcaster, recording_client):
    session_id = _overdue_preparation("LATE01")

    status = client.get("/api/sessions/status", params={"code": "LATE01"}).json()
    ready = client.post("/api/sessions/mark-ready", json={"session_id": session_id, "user_id": "user-1"}).json()

    assert status["status"] == "discussion"
    assert status["remaining"] > 0
    assert ready["started"] is False
    assert ready["status"] == "discussion"
    assert len(broadcaster.messages) == 1
    assert recording_client.count("start") == 2


def test_ended_preparation_ready_then_status_poll(client, broadcaster, recording_client):
    session_id = _overdue_preparation("LATE02")

    ready = client.post("/api/sessions/mark-ready", json={"session_id": session_id, "user_id": "user-1"}).json()
    status = client.get("/api/sessions/status", params={"code": "LATE02"}).json()

    assert ready["started"] is True
    assert status["status"] == "discussion"
    assert len(broadcaster.messages) == 1
    assert recording_client.count("start") == 2


def test_create_ignores_unknown_fields(client):
    res = client.post("/api/sessions/create", json={"user_id": "host", "creator": "someone else"})

    assert res.status_code == 201
    assert _session(res.json()["session_code"]).created_by == "host"


def test_lifespan_creates_tables_for_local_env(monkeypatch):
    from fastapi.testclient import TestClient

    from discussion_be.config import settings
    from discussion_be.db.base import Base, engine
    from discussion_be.main import app

    monkeypatch.setattr(settings, "app_env", "local")
    Base.metadata.drop_all(bind=engine)
    with TestClient(app) as c:
        assert c.get("/").status_code == 200
    assert inspect(engine).has_table("sessions")
