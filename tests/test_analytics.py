from BackEnd.core.models import (
    MOCK_EXAM, PROBLEM_SOLVING, Closed, LegacyCategory, QuestionRecord, RealSubject, ReviewBucket, Segment,
    Session, Subject,
)
from BackEnd.services.analytics import (
    build_analytics_snapshot, dates_in_range, hourly_distribution, process_analytics, subject_label,
)

from conftest import MIN, local_ms

NOW = local_ms(2025, 5, 10, 20, 0)
SUBJECTS = [Subject(id="a", name="Math", order=0), Subject(id="b", name="Physics", order=1)]


def session(sid, mode, date, start, end, title=None, metadata=None):
    return Session(id=sid, mode=mode, study_date=date, started_at=start, ended_at=Closed(end),
                   title=title, metadata=metadata)


def segment(gid, sid, subject, start, end):
    return Segment(id=gid, session_id=sid, subject=subject, kind="study", started_at=start, ended_at=Closed(end))


def record(rid, sid, gid, subject, no, start, duration):
    return QuestionRecord(id=rid, session_id=sid, segment_id=gid, subject=subject, question_no=no,
                          duration_ms=duration, started_at=start, ended_at=start + duration)


def test_bottleneck_scenario():
    t = local_ms(2025, 5, 10, 9, 0)
    sessions = [session("s1", PROBLEM_SOLVING, "2025-05-10", t, t + 10 * MIN)]
    segments = [segment("g1", "s1", RealSubject("a"), t, t + 10 * MIN)]
    records = [
        record("q1", "s1", "g1", RealSubject("a"), 1, t, 30000),
        record("q2", "s1", "g1", RealSubject("a"), 2, t + 30000, 90000),
    ]
    snap = build_analytics_snapshot(sessions, segments, records, SUBJECTS, NOW)
    assert snap.bottlenecks_week.average_ms == 60000
    assert snap.bottlenecks_week.count == 1
    item = snap.bottlenecks_week.items[0]
    assert (item.id, item.over_avg_ms, item.subject_name, item.study_date) == ("q2", 30000, "Math", "2025-05-10")


def test_records_at_average_are_not_bottlenecks():
    t = local_ms(2025, 5, 10, 9, 0)
    sessions = [session("s1", PROBLEM_SOLVING, "2025-05-10", t, t + MIN)]
    records = [record(f"q{i}", "s1", "g1", RealSubject("a"), i, t, 40000) for i in range(1, 4)]
    snap = build_analytics_snapshot(sessions, [], records, SUBJECTS, NOW)
    assert snap.bottlenecks_week.items == []


def build_week():
    today = local_ms(2025, 5, 10, 9, 0)
    three_days_ago = local_ms(2025, 5, 7, 9, 0)
    ten_days_ago = local_ms(2025, 4, 30, 9, 0)
    sessions = [
        session("p_today", PROBLEM_SOLVING, "2025-05-10", today, today + 60 * MIN),
        session("p_mid", PROBLEM_SOLVING, "2025-05-07", three_days_ago, three_days_ago + 30 * MIN),
        session("p_old", PROBLEM_SOLVING, "2025-04-30", ten_days_ago, ten_days_ago + 45 * MIN),
        session("m_today", MOCK_EXAM, "2025-05-10", today + 120 * MIN, today + 180 * MIN,
                title="Mock A", metadata={"mockExam": {"timeLimitSec": 3600, "targetQuestions": 20}}),
        session("m_old", MOCK_EXAM, "2025-04-30", ten_days_ago + 60 * MIN, ten_days_ago + 70 * MIN),
    ]
    segments = [
        segment("g1", "p_today", RealSubject("a"), today, today + 40 * MIN),
        segment("g2", "p_today", RealSubject("b"), today + 40 * MIN, today + 60 * MIN),
        segment("g3", "p_mid", RealSubject("b"), three_days_ago, three_days_ago + 30 * MIN),
        segment("g4", "p_old", RealSubject("a"), ten_days_ago, ten_days_ago + 45 * MIN),
        segment("g5", "m_today", LegacyCategory("law"), today + 120 * MIN, today + 170 * MIN),
        segment("g6", "m_today", ReviewBucket(), today + 170 * MIN, today + 180 * MIN),
        segment("g7", "m_old", RealSubject("a"), ten_days_ago + 60 * MIN, ten_days_ago + 70 * MIN),
    ]
    records = [
        record("r1", "p_today", "g1", RealSubject("a"), 1, today, 2 * MIN),
        record("r2", "p_today", "g1", RealSubject("a"), 2, today + 2 * MIN, 4 * MIN),
        record("r3", "p_mid", "g3", RealSubject("b"), 1, three_days_ago, 6 * MIN),
        record("r4", "p_old", "g4", RealSubject("a"), 1, ten_days_ago, 30 * MIN),
        record("r5", "m_today", "g5", LegacyCategory("law"), 1, today + 120 * MIN, 10 * MIN),
        record("r6", "m_today", "g5", LegacyCategory("law"), 2, today + 130 * MIN, 20 * MIN),
    ]
    return sessions, segments, records


def test_today_and_week_exclude_mock_exams():
    sessions, segments, records = build_week()
    snap = build_analytics_snapshot(sessions, segments, records, SUBJECTS, NOW)
    assert (snap.today.duration_ms, snap.today.question_count) == (60 * MIN, 2)
    assert (snap.week.duration_ms, snap.week.question_count) == (90 * MIN, 3)


def test_daily_series():
    sessions, segments, records = build_week()
    snap = build_analytics_snapshot(sessions, segments, records, SUBJECTS, NOW, daily_days=14)
    assert len(snap.daily) == 14
    assert snap.daily[-1].date == "2025-05-10"
    by_date = {d.date: d for d in snap.daily}
    assert by_date["2025-05-10"].duration_ms == 60 * MIN
    assert by_date["2025-05-07"].question_count == 1
    assert by_date["2025-04-30"].duration_ms == 45 * MIN
    assert by_date["2025-05-09"].duration_ms == 0


def test_subject_breakdown():
    sessions, segments, records = build_week()
    snap = build_analytics_snapshot(sessions, segments, records, SUBJECTS, NOW)
    rows = [(s.subject_name, s.duration_ms, s.question_count) for s in snap.subjects_week]
    assert rows == [("Physics", 50 * MIN, 1), ("Math", 40 * MIN, 2)]


def test_bottlenecks_ignore_old_and_mock_questions():
    sessions, segments, records = build_week()
    snap = build_analytics_snapshot(sessions, segments, records, SUBJECTS, NOW)
    assert snap.bottlenecks_week.average_ms == 4 * MIN
    assert [b.id for b in snap.bottlenecks_week.items] == ["r3"]


def test_mock_exam_block():
    sessions, segments, records = build_week()
    snap = build_analytics_snapshot(sessions, segments, records, SUBJECTS, NOW)
    mock = snap.mock_exam
    assert [m.session_id for m in mock.recent] == ["m_today", "m_old"]
    assert mock.latest.session_id == "m_today"
    assert (mock.latest.duration_ms, mock.latest.question_count) == (60 * MIN, 2)
    assert (mock.latest.time_limit_sec, mock.latest.target_questions) == (3600, 20)
    assert mock.recent[1].title == "Mock exam"
    assert mock.recent[1].time_limit_sec is None
    assert (mock.week.duration_ms, mock.week.question_count, mock.week.session_count) == (60 * MIN, 2, 1)


def test_recent_mock_exams_capped_at_six():
    base = local_ms(2025, 5, 1, 9, 0)
    sessions = [session(f"m{i}", MOCK_EXAM, "2025-05-01", base + i * MIN, base + i * MIN + 1) for i in range(8)]
    snap = build_analytics_snapshot(sessions, [], [], SUBJECTS, NOW)
    assert [m.session_id for m in snap.mock_exam.recent] == ["m7", "m6", "m5", "m4", "m3", "m2"]


def test_empty_snapshot():
    snap = build_analytics_snapshot([], [], [], [], NOW, daily_days=3)
    assert snap.today.duration_ms == 0
    assert [d.date for d in snap.daily] == ["2025-05-08", "2025-05-09", "2025-05-10"]
    assert snap.bottlenecks_week.average_ms == 0
    assert snap.mock_exam.latest is None


def test_subject_labels():
    subjects = {s.id: s for s in SUBJECTS}
    assert subject_label(RealSubject("a"), subjects) == "Math"
    assert subject_label(RealSubject("gone"), subjects) == "Other"
    assert subject_label(ReviewBucket(), subjects) == "Review"
    assert subject_label(LegacyCategory("law"), subjects) == "Other"


def test_dates_in_range_newest_first():
    assert dates_in_range(NOW, "today") == ["2025-05-10"]
    assert dates_in_range(NOW, "7days")[:2] == ["2025-05-10", "2025-05-09"]
    assert len(dates_in_range(NOW, "30days")) == 30


def test_hourly_distribution_splits_at_hour():
    start = local_ms(2025, 5, 10, 9, 30)
    seg = segment("g", "s", RealSubject("a"), start, start + 60 * MIN)
    buckets = hourly_distribution([seg], NOW)
    assert buckets[9] == 30 * MIN
    assert buckets[10] == 30 * MIN
    assert sum(buckets) == 60 * MIN


def test_process_analytics_filters():
    sessions, segments, records = build_week()
    week_all = process_analytics(sessions, segments, records, "7days", "all", NOW)
    assert week_all.total_duration_ms == 150 * MIN
    assert week_all.total_question_count == 5
    assert week_all.representative_day == "2025-05-10"
    assert {s.id for s in week_all.timeline_sessions} == {"p_today", "m_today"}

    mock = process_analytics(sessions, segments, records, "7days", "mock", NOW)
    assert mock.total_duration_ms == 60 * MIN
    assert [s.id for s in mock.timeline_sessions] == ["m_today"]

    physics = process_analytics(sessions, segments, records, "7days", "b", NOW)
    assert physics.total_duration_ms == 50 * MIN
    assert physics.total_question_count == 1
    assert physics.average_question_duration_ms == 50 * MIN
    assert [g.id for g in physics.timeline_segments] == ["g2"]


def test_process_analytics_representative_day_falls_back():
    sessions, segments, records = build_week()
    older = [s for s in sessions if s.id == "p_mid"]
    result = process_analytics(older, segments, records, "7days", "all", NOW)
    assert result.representative_day == "2025-05-07"
    today = process_analytics(older, segments, records, "today", "all", NOW)
    assert today.representative_day == "2025-05-10"
    assert today.total_duration_ms == 0
    assert today.average_question_duration_ms == 0
