from datetime import datetime

import pytest

from BackEnd.core.models import is_open
from BackEnd.services.log_store import LogStore

MIN = 60 * 1000


def local_ms(*args):
    """Epoch ms for a naive local datetime, e.g. local_ms(2025, 5, 10, 9, 30)."""
    return int(datetime(*args).timestamp() * 1000)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms
        return self.now


def check_invariants(state):
    open_sessions = [s for s in state.sessions if is_open(s.ended_at)]
    open_segments = [s for s in state.segments if is_open(s.ended_at)]
    assert len(open_sessions) <= 1
    assert len(open_segments) <= 1
    if open_segments:
        assert open_sessions and open_segments[0].session_id == open_sessions[0].id
    sessions = {s.id: s for s in state.sessions}
    for seg in state.segments:
        owner = sessions[seg.session_id]
        assert owner.started_at <= seg.started_at
        if seg not in open_segments and owner not in open_sessions:
            assert seg.ended_at.at <= owner.ended_at.at
    by_segment = {}
    for r in state.question_records:
        by_segment.setdefault(r.segment_id, []).append(r)
    for records in by_segment.values():
        records.sort(key=lambda r: r.started_at)
        assert [r.question_no for r in records] == list(range(1, len(records) + 1))


@pytest.fixture
def clock():
    return FakeClock(local_ms(2025, 5, 10, 9, 0))


@pytest.fixture
def store(clock):
    return LogStore(clock=clock)


@pytest.fixture
def dbfile(tmp_path, monkeypatch):
    monkeypatch.setenv("PACETIME_DATA_DIR", str(tmp_path))
    return tmp_path / "pacetime.db"


@pytest.fixture
def qapp():
    from PySide6.QtCore import QCoreApplication
    return QCoreApplication.instance() or QCoreApplication([])
