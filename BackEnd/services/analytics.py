"""Range-scoped analytics over the study log.

Problem-solving and mock-exam sessions are kept on separate tracks: the
today/week/daily/subject/bottleneck figures only ever look at
problem-solving sessions, mock exams get their own summary block.
All functions are pure; `now` is passed in once and reused throughout.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from BackEnd.core.clock import recent_study_dates, study_date_key
from BackEnd.core.config import DEFAULT_DAILY_DAYS, RECENT_MOCK_EXAMS, WEEK_DAYS
from BackEnd.core.models import (
	MOCK_EXAM, PROBLEM_SOLVING, LegacyCategory, RealSubject, ReviewBucket, RoomExam, end_or, subject_ref_key,
)
from BackEnd.services.records_index import segment_duration_ms

REVIEW_LABEL = "Review"
OTHER_LABEL = "Other"
MOCK_EXAM_LABEL = "Mock exam"

RANGE_DAYS = {"today": 1, "7days": 7, "30days": 30}


@dataclass
class Totals:
	duration_ms: int = 0
	question_count: int = 0


@dataclass
class DailyTotal:
	date: str
	duration_ms: int = 0
	question_count: int = 0


@dataclass
class SubjectTotal:
	subject_id: str
	subject_name: str
	duration_ms: int = 0
	question_count: int = 0


@dataclass
class BottleneckQuestion:
	id: str
	subject_id: str
	subject_name: str
	duration_ms: int
	over_avg_ms: int
	started_at: int
	study_date: str


@dataclass
class Bottlenecks:
	average_ms: int = 0
	items: List[BottleneckQuestion] = field(default_factory=list)

	@property
	def count(self):
		return len(self.items)


@dataclass
class MockExamSummary:
	session_id: str
	title: str
	study_date: str
	started_at: int
	duration_ms: int
	question_count: int
	time_limit_sec: Optional[int] = None
	target_questions: Optional[int] = None


@dataclass
class MockExamTotals:
	duration_ms: int = 0
	question_count: int = 0
	session_count: int = 0


@dataclass
class MockExamBlock:
	week: MockExamTotals = field(default_factory=MockExamTotals)
	recent: List[MockExamSummary] = field(default_factory=list)
	latest: Optional[MockExamSummary] = None


@dataclass
class AnalyticsSnapshot:
	today: Totals
	week: Totals
	daily: List[DailyTotal]
	subjects_week: List[SubjectTotal]
	bottlenecks_week: Bottlenecks
	mock_exam: MockExamBlock


@dataclass
class RangeAnalytics:
	total_duration_ms: int
	total_question_count: int
	average_question_duration_ms: float
	hourly_distribution: List[int]
	representative_day: str
	timeline_sessions: list
	timeline_segments: list
	timeline_questions: list


def subject_label(ref, subjects_by_id) -> str:
	if isinstance(ref, RealSubject):
		subject = subjects_by_id.get(ref.id)
		return subject.name if subject is not None else OTHER_LABEL
	if isinstance(ref, ReviewBucket):
		return REVIEW_LABEL
	if isinstance(ref, (LegacyCategory, RoomExam)):
		return OTHER_LABEL
	raise TypeError(f"not a subject ref: {ref!r}")


def _round_half_up(x):
	return int(x + 0.5) if x >= 0 else -int(-x + 0.5)


def build_analytics_snapshot(sessions, segments, question_records, subjects, now: int,
		daily_days: int = DEFAULT_DAILY_DAYS) -> AnalyticsSnapshot:
	subjects_by_id = {s.id: s for s in subjects}
	sessions_by_id = {s.id: s for s in sessions}

	duration_by_session = {}
	for seg in segments:
		duration_by_session[seg.session_id] = duration_by_session.get(seg.session_id, 0) + segment_duration_ms(seg, now)
	questions_by_session = {}
	for q in question_records:
		questions_by_session[q.session_id] = questions_by_session.get(q.session_id, 0) + 1

	today_key = study_date_key(now)
	week_keys = set(recent_study_dates(now, WEEK_DAYS))
	daily = [DailyTotal(date=d) for d in recent_study_dates(now, daily_days)]
	daily_by_date = {d.date: d for d in daily}

	today = Totals()
	week = Totals()
	week_problem_ids = set()
	for s in sessions:
		if s.mode != PROBLEM_SOLVING:
			continue
		dur = duration_by_session.get(s.id, 0)
		count = questions_by_session.get(s.id, 0)
		if s.study_date == today_key:
			today.duration_ms += dur
			today.question_count += count
		if s.study_date in week_keys:
			week.duration_ms += dur
			week.question_count += count
			week_problem_ids.add(s.id)
		day = daily_by_date.get(s.study_date)
		if day is not None:
			day.duration_ms += dur
			day.question_count += count

	subject_totals = {}
	for seg in segments:
		if seg.session_id not in week_problem_ids:
			continue
		key = subject_ref_key(seg.subject)
		total = subject_totals.get(key)
		if total is None:
			total = subject_totals[key] = SubjectTotal(key, subject_label(seg.subject, subjects_by_id))
		total.duration_ms += segment_duration_ms(seg, now)

	week_questions = []
	for q in question_records:
		if q.session_id not in week_problem_ids:
			continue
		week_questions.append(q)
		key = subject_ref_key(q.subject)
		total = subject_totals.get(key)
		if total is None:
			total = subject_totals[key] = SubjectTotal(key, subject_label(q.subject, subjects_by_id))
		total.question_count += 1

	subjects_week = sorted(
		(t for t in subject_totals.values() if t.duration_ms > 0 or t.question_count > 0),
		key=lambda t: t.duration_ms,
		reverse=True,
	)

	bottlenecks = Bottlenecks()
	if week_questions:
		bottlenecks.average_ms = _round_half_up(sum(q.duration_ms for q in week_questions) / len(week_questions))
	for q in week_questions:
		over = q.duration_ms - bottlenecks.average_ms
		if over <= 0:
			continue
		bottlenecks.items.append(BottleneckQuestion(
			id=q.id,
			subject_id=subject_ref_key(q.subject),
			subject_name=subject_label(q.subject, subjects_by_id),
			duration_ms=q.duration_ms,
			over_avg_ms=over,
			started_at=q.started_at,
			study_date=sessions_by_id[q.session_id].study_date,
		))
	bottlenecks.items.sort(key=lambda b: b.duration_ms, reverse=True)

	def summarize(s):
		meta = (s.metadata or {}).get("mockExam") or {}
		return MockExamSummary(
			session_id=s.id,
			title=s.title or MOCK_EXAM_LABEL,
			study_date=s.study_date,
			started_at=s.started_at,
			duration_ms=duration_by_session.get(s.id, 0),
			question_count=questions_by_session.get(s.id, 0),
			time_limit_sec=meta.get("timeLimitSec"),
			target_questions=meta.get("targetQuestions"),
		)

	mock_sessions = sorted((s for s in sessions if s.mode == MOCK_EXAM), key=lambda s: s.started_at, reverse=True)
	mock = MockExamBlock(recent=[summarize(s) for s in mock_sessions[:RECENT_MOCK_EXAMS]])
	mock.latest = mock.recent[0] if mock.recent else None
	for s in mock_sessions:
		if s.study_date not in week_keys:
			continue
		mock.week.session_count += 1
		mock.week.duration_ms += duration_by_session.get(s.id, 0)
		mock.week.question_count += questions_by_session.get(s.id, 0)

	return AnalyticsSnapshot(
		today=today,
		week=week,
		daily=daily,
		subjects_week=subjects_week,
		bottlenecks_week=bottlenecks,
		mock_exam=mock,
	)


# --- range / filter view ----------------------------------------------------

def dates_in_range(now: int, range_key: str) -> list:
	"""Study dates covered by a range, newest first."""
	days = RANGE_DAYS.get(range_key, 1)
	return list(reversed(recent_study_dates(now, days)))


def hourly_distribution(segments, now: int) -> list:
	"""Milliseconds of segment time per local hour of day, split at hour boundaries."""
	buckets = [0] * 24
	for seg in segments:
		current = seg.started_at
		end = end_or(seg.ended_at, now)
		while current < end:
			local = datetime.fromtimestamp(current / 1000)
			next_hour = local.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
			chunk_end = min(end, int(next_hour.timestamp() * 1000))
			if chunk_end <= current:
				chunk_end = end
			buckets[local.hour] += chunk_end - current
			current = chunk_end
	return buckets


def process_analytics(sessions, segments, question_records, range_key: str, subject_filter: str,
		now: int) -> RangeAnalytics:
	"""Totals, hourly spread and a one-day timeline for `range_key` ('today' | '7days' | '30days').

	`subject_filter` is 'all', 'mock' (mock-exam sessions only) or a subject id.
	"""
	range_dates = dates_in_range(now, range_key)
	in_range = set(range_dates)
	by_subject = subject_filter not in ("all", "mock")

	def keep_session(s):
		return subject_filter != "mock" or s.mode == MOCK_EXAM

	def keep_item(item):
		return not by_subject or subject_ref_key(item.subject) == subject_filter

	sessions_by_id = {s.id: s for s in sessions}
	target_ids = {s.id for s in sessions if s.study_date in in_range and keep_session(s)}
	target_segments = [seg for seg in segments if seg.session_id in target_ids and keep_item(seg)]
	target_questions = [q for q in question_records if q.session_id in target_ids and keep_item(q)]

	total_ms = sum(segment_duration_ms(seg, now) for seg in target_segments)
	total_q = len(target_questions)

	representative = range_dates[0]
	if range_key != "today":
		active_dates = {sessions_by_id[seg.session_id].study_date for seg in target_segments}
		for d in range_dates:
			if d in active_dates:
				representative = d
				break

	timeline_sessions = sorted(
		(s for s in sessions if s.study_date == representative and keep_session(s)),
		key=lambda s: s.started_at,
	)
	timeline_ids = {s.id for s in timeline_sessions}

	return RangeAnalytics(
		total_duration_ms=total_ms,
		total_question_count=total_q,
		average_question_duration_ms=total_ms / total_q if total_q else 0,
		hourly_distribution=hourly_distribution(target_segments, now),
		representative_day=representative,
		timeline_sessions=timeline_sessions,
		timeline_segments=[seg for seg in segments if seg.session_id in timeline_ids and keep_item(seg)],
		timeline_questions=[q for q in question_records if q.session_id in timeline_ids and keep_item(q)],
	)
