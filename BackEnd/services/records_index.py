from dataclasses import dataclass, field
from typing import Dict, List

from BackEnd.core.models import SESSION_MODES, QuestionRecord, Segment, Session, end_or, subject_ref_key


@dataclass
class SessionStats:
	duration_ms: int = 0
	question_count: int = 0
	segment_count: int = 0
	subject_ids: list = field(default_factory=list)


@dataclass
class ModeStats:
	duration_ms: int = 0
	question_count: int = 0
	session_count: int = 0


@dataclass
class DayStats:
	date: str
	duration_ms: int = 0
	question_count: int = 0
	session_count: int = 0
	by_mode: Dict[str, ModeStats] = field(default_factory=lambda: {m: ModeStats() for m in SESSION_MODES})


@dataclass
class RecordsIndex:
	sessions_by_id: Dict[str, Session]
	sessions_by_date: Dict[str, List[Session]]
	segments_by_session_id: Dict[str, List[Segment]]
	questions_by_segment_id: Dict[str, List[QuestionRecord]]
	session_stats_by_id: Dict[str, SessionStats]
	day_stats_by_date: Dict[str, DayStats]


def segment_duration_ms(segment: Segment, now: int) -> int:
	"""Closed segments use their end, open ones run until `now`; never negative."""
	return max(0, end_or(segment.ended_at, now) - segment.started_at)


def build_records_index(sessions, segments, question_records, now: int) -> RecordsIndex:
	"""Group the log by id, date, session and segment, and derive per-session/per-day stats."""
	sessions_by_id = {}
	sessions_by_date = {}
	for s in sessions:
		sessions_by_id[s.id] = s
		sessions_by_date.setdefault(s.study_date, []).append(s)
	for day in sessions_by_date.values():
		day.sort(key=lambda s: s.started_at, reverse=True)

	segments_by_session_id = {}
	for seg in segments:
		segments_by_session_id.setdefault(seg.session_id, []).append(seg)
	for segs in segments_by_session_id.values():
		segs.sort(key=lambda seg: seg.started_at)

	questions_by_segment_id = {}
	for q in question_records:
		questions_by_segment_id.setdefault(q.segment_id, []).append(q)
	for qs in questions_by_segment_id.values():
		qs.sort(key=lambda q: q.started_at)

	session_stats_by_id = {}
	for s in sessions:
		stats = SessionStats()
		for seg in segments_by_session_id.get(s.id, []):
			key = subject_ref_key(seg.subject)
			if key not in stats.subject_ids:
				stats.subject_ids.append(key)
			stats.duration_ms += segment_duration_ms(seg, now)
			stats.question_count += len(questions_by_segment_id.get(seg.id, []))
			stats.segment_count += 1
		session_stats_by_id[s.id] = stats

	day_stats_by_date = {}
	for s in sessions:
		stats = session_stats_by_id[s.id]
		day = day_stats_by_date.get(s.study_date)
		if day is None:
			day = day_stats_by_date[s.study_date] = DayStats(date=s.study_date)
		day.duration_ms += stats.duration_ms
		day.question_count += stats.question_count
		day.session_count += 1
		mode = day.by_mode.setdefault(s.mode, ModeStats())
		mode.duration_ms += stats.duration_ms
		mode.question_count += stats.question_count
		mode.session_count += 1

	return RecordsIndex(
		sessions_by_id=sessions_by_id,
		sessions_by_date=sessions_by_date,
		segments_by_session_id=segments_by_session_id,
		questions_by_segment_id=questions_by_segment_id,
		session_stats_by_id=session_stats_by_id,
		day_stats_by_date=day_stats_by_date,
	)
