import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from conftest import seed_session
from discussion_be.db.base import SessionLocal
from discussion_be.models.merged_transcripts import MergedTranscript
from discussion_be.models.transcripts import Transcript
from discussion_be.services.errors import MissingFields, PreconditionFailed, SessionNotFound
from discussion_be.services.transcripts import (
    ALREADY_MERGED,
    MERGED,
    WAITING_FOR_OTHERS,
    Submission,
    TranscriptCollector,
    TranscriptMerger,
    get_merged_transcript,
    merge_submissions,
)

T = datetime(2025, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


def _segments(*items):
    return [{"start": start, "end": start + 1.5, "text": text} for start, text in items]


# ----------------------------
# pure merge
# ----------------------------
def test_merge_orders_by_absolute_time():
    merged = merge_submissions([
        Submission(label="P1", start_at=T, segments=_segments((5, "hello"))),
        Submission(label="P2", start_at=T + timedelta(seconds=2), segments=_segments((1, "world"))),
    ])

    assert merged == "P2: world\nP1: hello"


def test_merge_is_deterministic():
    submissions = [
        Submission(label="A", start_at=T, segments=_segments((0, "first"), (4, "third"))),
        Submission(label="B", start_at=T + timedelta(seconds=1), segments=_segments((1, "second"), (3, "tie"))),
        Submission(label="C", start_at=T, segments=_segments((4, "tie too"))),
    ]

    first = merge_submissions(submissions)
    assert first == merge_submissions(submissions)
    # equal timestamps keep submission order
    assert first.splitlines() == ["A: first", "B: second", "A: third", "B: tie", "C: tie too"]


def test_merge_keeps_blank_segments_and_accepts_naive_anchor():
    merged = merge_submissions([
        Submission(label="A", start_at=datetime(2025, 3, 1, 10, 0), segments=_segments((2, ""), (3, "kept"))),
        Submission(label="B", start_at=T, segments=[{"start": 1, "text": None}]),
    ])

    assert merged.splitlines() == ["B: ", "A: ", "A: kept"]


# ----------------------------
# collection and the merge trigger
# ----------------------------
def test_submit_waits_for_every_human(db):
    session = seed_session(db, humans=3, ai=1, status="discussion")
    collector = TranscriptCollector()

    outcome = collector.submit(db, session.id, "user-1", _segments((0, "hi")), T)

    assert outcome.stored is True
    assert outcome.status == WAITING_FOR_OTHERS
    assert (outcome.submitted_count, outcome.expected_count) == (1, 3)
    assert outcome.merged is False
    assert get_merged_transcript(db, session.id) is None


def test_last_submission_merges_with_speaker_labels(db):
    session = seed_session(db, humans=4, status="discussion")
    collector = TranscriptCollector()
    texts = {"user-1": "I think so", "user-2": "I disagree", "user-3": "Why?", "user-4": "Because"}

    outcomes = [
        collector.submit(db, session.id, user, _segments((i, text)), T)
        for i, (user, text) in enumerate(texts.items())
    ]

    assert [o.status for o in outcomes[:3]] == [WAITING_FOR_OTHERS] * 3
    assert outcomes[3].status == MERGED
    assert outcomes[3].merged is True

    merged = get_merged_transcript(db, session.id)
    assert merged.merged_transcript.splitlines() == [
        "A: I think so",
        "B: I disagree",
        "C: Why?",
        "D: Because",
    ]
    db.refresh(session)
    assert session.transcript_merged is True
    assert session.status == "evaluation"


def test_duplicate_submission_keeps_first_copy(db):
    session = seed_session(db, humans=2, status="discussion")
    collector = TranscriptCollector()

    collector.submit(db, session.id, "user-1", _segments((0, "original")), T)
    outcome = collector.submit(db, session.id, "user-1", _segments((0, "replacement")), T)

    assert outcome.stored is False
    assert outcome.submitted_count == 1
    row = db.execute(select(Transcript).where(Transcript.user_id == "user-1")).scalar_one()
    assert row.transcript[0]["text"] == "original"


def test_check_after_merge_is_already_merged(db):
    session = seed_session(db, humans=1, status="discussion")
    collector = TranscriptCollector()
    assert collector.submit(db, session.id, "user-1", _segments((0, "solo")), T).merged

    outcome = collector.check_merge(db, session.id)

    assert outcome.status == ALREADY_MERGED
    assert db.execute(select(func.count()).select_from(MergedTranscript)).scalar_one() == 1


def test_empty_segment_list_counts_as_submission(db):
    session = seed_session(db, humans=1, status="discussion")

    outcome = TranscriptCollector().submit(db, session.id, "user-1", [], T)

    assert outcome.merged is True
    assert get_merged_transcript(db, session.id).merged_transcript == ""


def test_submit_preconditions(db):
    session = seed_session(db, humans=2, status="discussion")
    collector = TranscriptCollector()

    with pytest.raises(MissingFields) as exc:
        collector.submit(db, session.id, "user-1", None, None)
    assert exc.value.fields == ["transcript", "startAt"]

    with pytest.raises(SessionNotFound):
        collector.submit(db, "missing", "user-1", [], T)

    with pytest.raises(PreconditionFailed):
        collector.submit(db, session.id, "stranger", [], T)


class ExplodingMerger(TranscriptMerger):
    @staticmethod
    def merge(db, session_id):
        raise RuntimeError("storage down")


def test_failed_merge_releases_the_flag(db):
    session = seed_session(db, humans=1, status="discussion")

    with pytest.raises(RuntimeError):
        TranscriptCollector(merger=ExplodingMerger()).submit(db, session.id, "user-1", _segments((0, "x")), T)

    db.refresh(session)
    assert session.transcript_merged is False
    # a redelivered trigger can now merge
    assert TranscriptCollector().check_merge(db, session.id).status == MERGED


def test_concurrent_final_submissions_merge_exactly_once(db):
    session = seed_session(db, humans=4, status="discussion")
    session_id = session.id
    collector = TranscriptCollector()

    barrier = threading.Barrier(4)
    outcomes = []
    errors = []
    lock = threading.Lock()

    def worker(index):
        own = SessionLocal()
        try:
            barrier.wait()
            result = collector.submit(own, session_id, f"user-{index + 1}", _segments((index, f"line {index}")), T)
            with lock:
                outcomes.append(result)
        except Exception as e:  # surfaced by the assertion below
            with lock:
                errors.append(e)
        finally:
            own.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sum(1 for o in outcomes if o.merged) == 1
    assert db.execute(
        select(func.count()).select_from(MergedTranscript).where(MergedTranscript.session_id == session_id)
    ).scalar_one() == 1
