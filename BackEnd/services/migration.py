"""Rebuild the session/segment hierarchy from older persisted data.

Two legacy sources feed the current schema:

* version 0/1 documents, which only had a flat list of question records;
  sessions and segments are inferred from time gaps, subject changes and
  question-number resets (see `infer_boundaries`).
* the old exam history list stored under its own key, one entry per finished
  mock exam with its laps.

Malformed fields fall back to safe defaults and non-object entries are
dropped; nothing in here raises on bad input. The outcome of a run is
summarised in a `MigrationReport`.
"""
import logging
import math
from collections import Counter, namedtuple
from dataclasses import dataclass, field
from datetime import datetime

from BackEnd.core.clock import study_date_key
from BackEnd.core.config import (
	LEGACY_EXAM_SESSIONS_KEY, NEW_SEGMENT_GAP_MS, NEW_SESSION_GAP_MS, SCHEMA_VERSION,
)
from BackEnd.core.documents import SubjectDoc, load_entries, state_from_document
from BackEnd.core.ids import create_id
from BackEnd.core.models import (
	MOCK_EXAM, PROBLEM_SOLVING, RECORD_SOURCES, Closed, LegacyCategory, LogState, QuestionRecord,
	Segment, Session, Stopwatch, parse_subject_ref,
)
from BackEnd.repos import log_repo

logger = logging.getLogger(__name__)

LEGACY_EXAM_TITLE = "Mock exam (legacy data)"

Parsed = namedtuple("Parsed", "value defaulted")

LegacyRecord = namedtuple(
	"LegacyRecord",
	"id session_id subject_id question_no duration_ms started_at ended_at source mode study_date",
)

Boundary = namedtuple("Boundary", "new_session new_segment")


@dataclass
class MigrationReport:
	from_version: int = 0
	sessions: int = 0
	segments: int = 0
	question_records: int = 0
	legacy_exams: int = 0
	dropped: int = 0
	defaulted: Counter = field(default_factory=Counter)

	@property
	def defaulted_total(self):
		return sum(self.defaulted.values())


@dataclass
class Rebuilt:
	sessions: list = field(default_factory=list)
	segments: list = field(default_factory=list)
	question_records: list = field(default_factory=list)


def parse_or_default(value, default, scale=1) -> Parsed:
	"""Coerce value to a finite number (times `scale`, as int); otherwise return `default` flagged as defaulted."""
	if isinstance(value, bool):
		return Parsed(default, True)
	if isinstance(value, (int, float)):
		n = value
	elif isinstance(value, str):
		try:
			n = float(value.strip())
		except ValueError:
			return Parsed(default, True)
	else:
		return Parsed(default, True)
	if not math.isfinite(n):
		return Parsed(default, True)
	return Parsed(int(n * scale), False)


def _field(raw, key, default, report, name, scale=1):
	parsed = parse_or_default(raw.get(key), default, scale)
	if parsed.defaulted:
		report.defaulted[name] += 1
	return parsed.value


def detect_legacy_mode(session_id) -> str:
	return MOCK_EXAM if "exam" in (session_id or "").lower() else PROBLEM_SOLVING


def normalize_legacy_records(raw_records, now, report):
	"""Validate flat legacy question records and sort them by start time."""
	out = []
	for raw in raw_records if isinstance(raw_records, list) else []:
		if not isinstance(raw, dict):
			report.dropped += 1
			continue
		started = _field(raw, "startedAt", now, report, "startedAt")
		ended = _field(raw, "endedAt", started, report, "endedAt")
		session_id = str(raw.get("sessionId") or "legacy")
		source = raw.get("source")
		out.append(LegacyRecord(
			id=str(raw.get("id") or create_id("qr")),
			session_id=session_id,
			subject_id=str(raw.get("subjectId") or "unknown"),
			question_no=_field(raw, "questionNo", 1, report, "questionNo"),
			duration_ms=max(0, _field(raw, "durationMs", 0, report, "durationMs")),
			started_at=started,
			ended_at=ended,
			source=source if source in RECORD_SOURCES else "tap",
			mode=detect_legacy_mode(session_id),
			study_date=study_date_key(started),
		))
	out.sort(key=lambda r: r.started_at)
	return out


def infer_boundaries(records, session_gap_ms=NEW_SESSION_GAP_MS, segment_gap_ms=NEW_SEGMENT_GAP_MS):
	"""Decide, per chronologically sorted record, whether it opens a new session and/or segment.

	A new session starts on the first record, on a mode or study-day change, or when the gap
	since the previous record's end exceeds `session_gap_ms`. A new segment starts with every
	new session, on a subject change, on a gap over `segment_gap_ms`, or when the legacy
	question number does not increase (the counter was reset).
	"""
	decisions = []
	prev = None
	last_no = 0
	for r in records:
		gap = r.started_at - prev.ended_at if prev is not None else 0
		new_session = (
			prev is None
			or r.mode != prev.mode
			or r.study_date != prev.study_date
			or gap > session_gap_ms
		)
		if new_session:
			last_no = 0
		new_segment = (
			new_session
			or r.subject_id != prev.subject_id
			or gap > segment_gap_ms
			or (last_no > 0 and r.question_no <= last_no)
		)
		decisions.append(Boundary(new_session, new_segment))
		last_no = r.question_no
		prev = r
	return decisions


def rebuild_from_flat_log(records, session_gap_ms=NEW_SESSION_GAP_MS, segment_gap_ms=NEW_SEGMENT_GAP_MS):
	"""Replay sorted legacy records into sessions, segments and renumbered question records."""
	out = Rebuilt()
	session = None
	segment = None
	seg_count = 0
	seg_end = {}
	for r, b in zip(records, infer_boundaries(records, session_gap_ms, segment_gap_ms)):
		if b.new_session:
			session = Session(id=create_id("sess"), mode=r.mode, study_date=r.study_date,
				started_at=r.started_at, title=LEGACY_EXAM_TITLE if r.mode == MOCK_EXAM else None)
			out.sessions.append(session)
		if b.new_segment:
			segment = Segment(id=create_id("seg"), session_id=session.id, subject=parse_subject_ref(r.subject_id),
				kind="solve" if r.mode == MOCK_EXAM else "study", started_at=r.started_at)
			out.segments.append(segment)
			seg_count = 0
		seg_count += 1
		out.question_records.append(QuestionRecord(
			id=r.id, session_id=session.id, segment_id=segment.id, subject=segment.subject,
			question_no=seg_count, duration_ms=r.duration_ms, started_at=r.started_at,
			ended_at=r.ended_at, source=r.source,
		))
		seg_end[segment.id] = max(seg_end.get(segment.id, r.ended_at), r.ended_at)

	sess_end = {}
	segments = []
	for seg in out.segments:
		end = max(seg_end.get(seg.id, seg.started_at), seg.started_at)
		segments.append(Segment(seg.id, seg.session_id, seg.subject, seg.kind, seg.started_at, Closed(end)))
		sess_end[seg.session_id] = max(sess_end.get(seg.session_id, end), end)
	out.segments = segments
	out.sessions = [
		Session(s.id, s.mode, s.study_date, s.started_at, Closed(max(sess_end.get(s.id, s.started_at), s.started_at)),
			s.title, s.metadata)
		for s in out.sessions
	]
	return out


def _parse_iso_ms(value):
	if not isinstance(value, str):
		return None
	try:
		dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
	except ValueError:
		return None
	return int(dt.timestamp() * 1000)


def import_legacy_exams(entries, report):
	"""Turn old exam history entries into closed mock-exam sessions with one segment each."""
	out = Rebuilt()
	for raw in entries if isinstance(entries, list) else []:
		if not isinstance(raw, dict):
			report.dropped += 1
			continue
		end_ms = _parse_iso_ms(raw.get("date"))
		if end_ms is None:
			report.dropped += 1
			continue
		total_sec = max(0, _field(raw, "totalSeconds", 0, report, "totalSeconds"))
		start_ms = end_ms - total_sec * 1000
		session = Session(
			id=create_id("sess"), mode=MOCK_EXAM, study_date=study_date_key(end_ms),
			started_at=start_ms, ended_at=Closed(end_ms),
			title=str(raw.get("title") or LEGACY_EXAM_TITLE),
			metadata={"mockExam": {
				"subjectIds": [],
				"timeLimitSec": _field(raw, "targetSeconds", total_sec, report, "targetSeconds"),
				"targetQuestions": _field(raw, "totalQuestions", 0, report, "totalQuestions"),
			}},
		)
		segment = Segment(id=create_id("seg"), session_id=session.id,
			subject=LegacyCategory(str(raw.get("categoryId") or "legacy")), kind="solve",
			started_at=start_ms, ended_at=Closed(end_ms))
		out.sessions.append(session)
		out.segments.append(segment)

		cursor = start_ms
		qno = 0
		laps = raw.get("laps")
		for lap in laps if isinstance(laps, list) else []:
			if not isinstance(lap, dict):
				report.dropped += 1
				continue
			duration_ms = max(0, _field(lap, "duration", 0, report, "lapDuration", scale=1000))
			qno += 1
			out.question_records.append(QuestionRecord(
				id=create_id("qr"), session_id=session.id, segment_id=segment.id, subject=segment.subject,
				question_no=qno, duration_ms=duration_ms, started_at=cursor, ended_at=cursor + duration_ms, source="tap",
			))
			cursor += duration_ms
		report.legacy_exams += 1
	return out


def load_legacy_exam_sessions(dbfile=None):
	"""Read the old exam history and remove it from storage; [] when absent or unreadable."""
	raw = log_repo.read_json(LEGACY_EXAM_SESSIONS_KEY, dbfile)
	if raw is None:
		return []
	log_repo.delete_key(LEGACY_EXAM_SESSIONS_KEY, dbfile)
	return raw if isinstance(raw, list) else []


def _dedupe(items):
	seen = set()
	out = []
	for it in items:
		if it.id in seen:
			continue
		seen.add(it.id)
		out.append(it)
	return tuple(out)


def _legacy_subjects(raw, report):
	subjects, skipped = load_entries(raw, SubjectDoc, "legacy subjects")
	report.dropped += skipped
	return subjects


def _legacy_stopwatch(raw, report):
	if not isinstance(raw, dict):
		return Stopwatch()
	started = parse_or_default(raw.get("startedAt"), None)
	return Stopwatch(
		is_running=bool(raw.get("isRunning", False)) and started.value is not None,
		started_at=started.value,
		accumulated_ms=max(0, _field(raw, "accumulatedMs", 0, report, "accumulatedMs")),
	)


def migrate_document(persisted, stored_version, now, legacy_exams=None):
	"""Return (LogState, MigrationReport) for a persisted `state` object of any schema version.

	Documents already at SCHEMA_VERSION are returned as stored.
	"""
	report = MigrationReport(from_version=stored_version)
	if stored_version >= SCHEMA_VERSION:
		return state_from_document(persisted), report

	legacy = persisted if isinstance(persisted, dict) else {}
	normalized = normalize_legacy_records(legacy.get("questionRecords"), now, report)
	records = _dedupe(normalized)
	report.dropped += len(normalized) - len(records)
	rebuilt = rebuild_from_flat_log(records)
	exams = import_legacy_exams(legacy_exams, report)

	sessions = _dedupe(exams.sessions + rebuilt.sessions)
	segments = _dedupe(exams.segments + rebuilt.segments)
	question_records = _dedupe(exams.question_records + rebuilt.question_records)
	report.sessions, report.segments, report.question_records = len(sessions), len(segments), len(question_records)

	active_subject = legacy.get("activeSubjectId")
	state = LogState(
		subjects=_legacy_subjects(legacy.get("subjects"), report),
		stopwatch=_legacy_stopwatch(legacy.get("stopwatch"), report),
		stopwatch_study_date=study_date_key(now),
		sessions=sessions,
		segments=segments,
		question_records=question_records,
		active_subject_id=str(active_subject) if active_subject else None,
	)
	logger.info(
		"Migrated v%s -> v%s: %d sessions, %d segments, %d records (%d legacy exams, %d dropped, %d fields defaulted)",
		stored_version, SCHEMA_VERSION, report.sessions, report.segments, report.question_records,
		report.legacy_exams, report.dropped, report.defaulted_total,
	)
	return state, report
