from BackEnd.core.config import SCHEMA_VERSION, STORAGE_KEY
from BackEnd.core.documents import SessionDoc, state_from_document, state_to_document
from BackEnd.core.models import OPEN, Closed, ReviewBucket, Stopwatch
from BackEnd.repos import log_repo
from BackEnd.services.log_store import LogStore

from conftest import MIN, check_invariants, local_ms

T0 = local_ms(2025, 5, 10, 9, 0)


def _session(sid, start, end):
    return {"id": sid, "mode": "problem-solving", "studyDate": "2025-05-10", "startedAt": start, "endedAt": end}


def _segment(gid, sid, start, end):
    return {"id": gid, "sessionId": sid, "subjectId": "math", "kind": "study", "startedAt": start, "endedAt": end}


def _record(rid, sid, gid, no, start):
    return {"id": rid, "sessionId": sid, "segmentId": gid, "subjectId": "math", "questionNo": no,
            "durationMs": MIN, "startedAt": start, "endedAt": start + MIN, "source": "tap"}


def test_document_uses_camel_case_keys(store, clock):
    subject = store.add_subject("Math")
    store.set_active_subject(subject.id)
    store.start()
    doc = state_to_document(store.state)
    assert doc["activeSubjectId"] == subject.id
    assert doc["subjects"][0]["isArchived"] is False
    session = doc["sessions"][0]
    assert session["studyDate"] == "2025-05-10"
    assert session["startedAt"] == clock.now
    assert session["endedAt"] is None
    assert doc["segments"][0]["subjectId"] == subject.id
    assert doc["stopwatch"] == {"isRunning": True, "startedAt": clock.now, "accumulatedMs": 0}


def test_document_round_trip_keeps_entities(store, clock):
    subject = store.add_subject("Math")
    store.set_active_subject(subject.id)
    store.start()
    store.add_question_for_active_segment(MIN, clock.now, clock.now + MIN)
    clock.advance(5 * MIN)
    session = store.active_session
    store.start_segment(session.id, ReviewBucket(), "review")
    assert state_from_document(state_to_document(store.state)) == store.state


def test_invalid_entries_are_skipped():
    doc = {
        "sessions": [
            {"id": "s1", "startedAt": "oops"},
            _session("s2", T0, T0 + 10 * MIN),
            "junk",
        ],
        "segments": [
            _segment("g1", "s1", T0, T0 + MIN),
            _segment("g2", "s2", T0, T0 + 10 * MIN),
            {**_segment("g3", "s2", T0, None), "kind": "nap"},
        ],
        "questionRecords": [
            _record("q1", "s2", "g2", 1, T0),
            _record("q2", "s2", "g2", 0, T0 + MIN),
            _record("q3", "s1", "g1", 1, T0),
        ],
        "stopwatch": {"isRunning": "maybe"},
        "activeSubjectId": 7,
    }
    state = state_from_document(doc)
    assert [s.id for s in state.sessions] == ["s2"]
    assert [g.id for g in state.segments] == ["g2"]
    assert [r.id for r in state.question_records] == ["q1"]
    assert state.stopwatch == Stopwatch()
    assert state.active_subject_id is None
    check_invariants(state)


def test_session_doc_accepts_field_names_and_aliases():
    by_alias = SessionDoc.model_validate(_session("s1", T0, None)).to_entity()
    by_name = SessionDoc(id="s1", study_date="2025-05-10", started_at=T0).to_entity()
    assert by_alias == by_name
    assert by_alias.ended_at == OPEN


def test_bootstrap_survives_invalid_entry(dbfile):
    state = {
        "sessions": [{"id": "s1", "startedAt": "oops"}, _session("s2", T0, T0 + 10 * MIN)],
        "segments": [_segment("g2", "s2", T0, T0 + 10 * MIN)],
        "questionRecords": [_record("q1", "s2", "g2", 1, T0)],
    }
    log_repo.write_json(STORAGE_KEY, {"state": state, "version": SCHEMA_VERSION}, dbfile)

    store = LogStore.bootstrap(dbfile, clock=lambda: T0 + 60 * MIN)
    store.close()
    assert [s.id for s in store.state.sessions] == ["s2"]
    assert store.state.sessions[0].ended_at == Closed(T0 + 10 * MIN)
    assert store.records_index().session_stats_by_id["s2"].question_count == 1
    check_invariants(store.state)
