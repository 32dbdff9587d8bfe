"""Pure state transitions for the study log.

Every operation takes the current LogState plus an explicit `now` and
returns `(new_state, result)`. `result` is the created or affected entity,
or None when the operation had nothing to do (not running, unknown id, ...).
Transitions never raise on ordinary misuse.
"""
from dataclasses import replace

from BackEnd.core.clock import study_date_key
from BackEnd.core.ids import create_id
from BackEnd.core.models import (
	MOCK_EXAM, PROBLEM_SOLVING, RECORD_SOURCES, SESSION_MODES, Closed, LogState, QuestionRecord,
	RealSubject, Segment, Session, Stopwatch, Subject, end_or, is_open, parse_subject_ref,
)


def _as_ref(subject):
	if isinstance(subject, str):
		return parse_subject_ref(subject)
	return subject


def _replace_by_id(items, new):
	return tuple(new if it.id == new.id else it for it in items)


def _find(items, item_id):
	for it in items:
		if it.id == item_id:
			return it
	return None


def _close_segment(state, segment, at):
	closed = replace(segment, ended_at=Closed(max(at, segment.started_at)))
	return replace(state, segments=_replace_by_id(state.segments, closed)), closed


def _close_active_segment(state, at):
	seg = state.active_segment
	if seg is None:
		return state, None
	return _close_segment(state, seg, at)


def _close_session(state, session, at):
	"""Close a session and any of its open segments; the session ends no earlier than its segments."""
	latest = session.started_at
	for seg in state.segments:
		if seg.session_id != session.id:
			continue
		if is_open(seg.ended_at):
			state, seg = _close_segment(state, seg, at)
		latest = max(latest, end_or(seg.ended_at, seg.started_at))
	closed = replace(session, ended_at=Closed(max(at, latest)))
	return replace(state, sessions=_replace_by_id(state.sessions, closed)), closed


def _last_activity(state, session):
	latest = session.started_at
	for seg in state.segments:
		if seg.session_id == session.id:
			latest = max(latest, end_or(seg.ended_at, seg.started_at))
	return latest


def _open_session(state, mode, at, title=None, metadata=None):
	session = Session(id=create_id("sess"), mode=mode, study_date=study_date_key(at), started_at=at,
		title=title, metadata=metadata)
	return replace(state, sessions=state.sessions + (session,)), session


def _open_segment(state, session_id, subject, kind, at):
	seg = Segment(id=create_id("seg"), session_id=session_id, subject=_as_ref(subject), kind=kind, started_at=at)
	return replace(state, segments=state.segments + (seg,)), seg


# --- stopwatch --------------------------------------------------------------

def sync_study_day(state: LogState, now: int) -> LogState:
	"""Reset the daily accumulator when the study day has changed."""
	today = study_date_key(now)
	if state.stopwatch_study_date == today:
		return state
	sw = state.stopwatch
	if sw.is_running:
		sw = Stopwatch(is_running=True, started_at=now, accumulated_ms=0)
	else:
		sw = Stopwatch()
	return replace(state, stopwatch=sw, stopwatch_study_date=today)


def elapsed_ms(state: LogState, now: int) -> int:
	"""Accumulated time plus the running portion, if any."""
	sw = state.stopwatch
	if sw.is_running and sw.started_at is not None:
		return sw.accumulated_ms + max(0, now - sw.started_at)
	return sw.accumulated_ms


def start(state: LogState, now: int):
	if state.stopwatch.is_running or not state.active_subject_id:
		return state, None
	today = study_date_key(now)
	state = sync_study_day(state, now)

	session = state.active_session
	if session is None or session.mode != PROBLEM_SOLVING or session.study_date != today:
		if session is not None:
			state, _ = _close_session(state, session, _last_activity(state, session))
		state, session = _open_session(state, PROBLEM_SOLVING, now)

	state, _ = _close_active_segment(state, now)
	state, segment = _open_segment(state, session.id, RealSubject(state.active_subject_id), "study", now)
	sw = Stopwatch(is_running=True, started_at=now, accumulated_ms=state.stopwatch.accumulated_ms)
	return replace(state, stopwatch=sw), segment


def pause(state: LogState, now: int):
	sw = state.stopwatch
	if not sw.is_running:
		return state, None
	elapsed = max(0, now - sw.started_at) if sw.started_at is not None else 0
	sw = Stopwatch(is_running=False, started_at=None, accumulated_ms=sw.accumulated_ms + elapsed)
	state, _ = _close_active_segment(state, now)
	return replace(state, stopwatch=sw), sw


def reset(state: LogState, now: int):
	state, _ = _close_active_segment(state, now)
	session = state.active_session
	if session is not None:
		state, _ = _close_session(state, session, now)
	sw = Stopwatch()
	return replace(state, stopwatch=sw, stopwatch_study_date=study_date_key(now)), sw


# --- sessions & segments ----------------------------------------------------

def start_session(state: LogState, mode: str, now: int, title=None, metadata=None, started_at=None):
	if mode not in SESSION_MODES:
		return state, None
	if state.active_session is not None:
		state, _ = end_session(state, now)
	state, session = _open_session(state, mode, started_at if started_at is not None else now,
		title=title, metadata=metadata)
	return state, session


def end_session(state: LogState, now: int):
	session = state.active_session
	if session is None:
		return state, None
	if state.stopwatch.is_running:
		state, _ = pause(state, now)
	state, closed = _close_session(state, session, now)
	if closed.mode == MOCK_EXAM:
		state = sync_study_day(state, now)
		sw = state.stopwatch
		spent = max(0, end_or(closed.ended_at, now) - closed.started_at)
		state = replace(state, stopwatch=replace(sw, accumulated_ms=sw.accumulated_ms + spent))
	return state, closed


def start_segment(state: LogState, session_id: str, subject, kind: str, now: int, started_at=None):
	session = _find(state.sessions, session_id)
	if session is None or not is_open(session.ended_at):
		return state, None
	at = max(started_at if started_at is not None else now, session.started_at)
	state, _ = _close_active_segment(state, at)
	return _open_segment(state, session.id, subject, kind, at)


def end_segment(state: LogState, segment_id: str, now: int, ended_at=None):
	seg = _find(state.segments, segment_id)
	if seg is None or not is_open(seg.ended_at):
		return state, None
	return _close_segment(state, seg, ended_at if ended_at is not None else now)


def set_active_subject(state: LogState, subject_id, now: int):
	"""Select a subject; while running this closes the current segment and opens one for the new subject."""
	if subject_id == state.active_subject_id:
		return state, False
	state = replace(state, active_subject_id=subject_id)
	if not state.stopwatch.is_running:
		return state, True
	state, _ = _close_active_segment(state, now)
	session = state.active_session
	if subject_id and session is not None and session.mode == PROBLEM_SOLVING:
		state, _ = _open_segment(state, session.id, RealSubject(subject_id), "study", now)
	return state, True


# --- question records -------------------------------------------------------

def add_question_record(state: LogState, session_id, segment_id, subject, duration_ms, started_at,
		ended_at, source="tap", record_id=None):
	question_no = sum(1 for r in state.question_records if r.segment_id == segment_id) + 1
	record = QuestionRecord(
		id=record_id or create_id("qr"),
		session_id=session_id,
		segment_id=segment_id,
		subject=_as_ref(subject),
		question_no=question_no,
		duration_ms=max(0, int(duration_ms)),
		started_at=int(started_at),
		ended_at=int(ended_at),
		source=source if source in RECORD_SOURCES else "tap",
	)
	return replace(state, question_records=state.question_records + (record,)), record


def add_question_for_active_segment(state: LogState, duration_ms, started_at, ended_at, source="tap"):
	seg = state.active_segment
	if seg is None:
		return state, None
	return add_question_record(state, seg.session_id, seg.id, seg.subject, duration_ms, started_at,
		ended_at, source)


def undo_last_question_in_segment(state: LogState, segment_id: str):
	latest_idx = None
	for idx, r in enumerate(state.question_records):
		if r.segment_id != segment_id:
			continue
		if latest_idx is None or r.started_at >= state.question_records[latest_idx].started_at:
			latest_idx = idx
	if latest_idx is None:
		return state, None
	removed = state.question_records[latest_idx]
	records = state.question_records[:latest_idx] + state.question_records[latest_idx + 1:]
	return replace(state, question_records=records), removed


# --- subjects ---------------------------------------------------------------

def add_subject(state: LogState, name: str, now: int):
	subject = Subject(id=create_id("subj"), name=name.strip(), order=len(state.subjects),
		created_at=now, updated_at=now)
	return replace(state, subjects=state.subjects + (subject,)), subject


def rename_subject(state: LogState, subject_id: str, name: str, now: int):
	subject = _find(state.subjects, subject_id)
	if subject is None:
		return state, None
	subject = replace(subject, name=name.strip(), updated_at=now)
	return replace(state, subjects=_replace_by_id(state.subjects, subject)), subject


def archive_subject(state: LogState, subject_id: str, now: int):
	"""Soft delete: the subject stays so old records keep a valid reference."""
	subject = _find(state.subjects, subject_id)
	if subject is None:
		return state, None
	subject = replace(subject, is_archived=True, updated_at=now)
	state = replace(state, subjects=_replace_by_id(state.subjects, subject))
	if state.active_subject_id == subject_id:
		state, _ = set_active_subject(state, None, now)
	return state, subject


# --- external producers & recovery ------------------------------------------

def ingest_session(state: LogState, session: Session, segments=(), records=()):
	"""Append a finished session produced elsewhere (e.g. a room exam)."""
	if is_open(session.ended_at) or _find(state.sessions, session.id) is not None:
		return state, None
	known_segments = {s.id for s in state.segments}
	known_records = {r.id for r in state.question_records}
	new_segments = tuple(
		replace(seg, ended_at=Closed(end_or(seg.ended_at, seg.started_at)))
		for seg in segments
		if seg.session_id == session.id and seg.id not in known_segments
	)
	own_segments = {seg.id for seg in new_segments}
	new_records = [r for r in records if r.segment_id in own_segments and r.id not in known_records]
	new_records.sort(key=lambda r: r.started_at)
	counters = {}
	numbered = []
	for r in new_records:
		counters[r.segment_id] = counters.get(r.segment_id, 0) + 1
		numbered.append(replace(r, session_id=session.id, question_no=counters[r.segment_id]))
	return replace(
		state,
		sessions=state.sessions + (session,),
		segments=state.segments + new_segments,
		question_records=state.question_records + tuple(numbered),
	), session


def recover_after_load(state: LogState) -> LogState:
	"""Stop a stopwatch left running and close anything left open, adding no time."""
	sw = state.stopwatch
	if sw.is_running:
		sw = Stopwatch(is_running=False, started_at=None, accumulated_ms=sw.accumulated_ms)
	segments = tuple(
		replace(seg, ended_at=Closed(seg.started_at)) if is_open(seg.ended_at) else seg
		for seg in state.segments
	)
	latest = {}
	for seg in segments:
		latest[seg.session_id] = max(latest.get(seg.session_id, 0), seg.ended_at.at)
	# a session never ends before its own segments
	sessions = tuple(
		replace(s, ended_at=Closed(max(s.started_at, latest.get(s.id, 0)))) if is_open(s.ended_at) else s
		for s in state.sessions
	)
	return replace(state, stopwatch=sw, segments=segments, sessions=sessions)
