"""Persisted document form of the study log.

Each stored entry is validated with a pydantic model using the camelCase keys
of the storage format, then turned into the frozen entity dataclasses.
Entries that fail validation are skipped and logged, and entries whose
parent was skipped go with it.
"""
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from BackEnd.core.models import (
	OPEN, PROBLEM_SOLVING, Closed, LogState, QuestionRecord, Segment, Session, Stopwatch, Subject,
	parse_subject_ref, subject_ref_key,
)

logger = logging.getLogger(__name__)


class _Doc(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _end_mark(raw):
	return OPEN if raw is None else Closed(raw)


def _end_raw(end):
	return end.at if isinstance(end, Closed) else None


class SubjectDoc(_Doc):
	id: str
	name: str = ""
	order: int = 0
	is_archived: bool = False
	created_at: int = 0
	updated_at: int = 0

	@classmethod
	def from_entity(cls, s: Subject):
		return cls(id=s.id, name=s.name, order=s.order, is_archived=s.is_archived,
			created_at=s.created_at, updated_at=s.updated_at)

	def to_entity(self) -> Subject:
		return Subject(self.id, self.name, self.order, self.is_archived, self.created_at, self.updated_at)


class SessionDoc(_Doc):
	id: str
	mode: Literal["problem-solving", "mock-exam"] = PROBLEM_SOLVING
	study_date: str
	started_at: int
	ended_at: Optional[int] = None
	title: Optional[str] = None
	metadata: Optional[dict] = None

	@classmethod
	def from_entity(cls, s: Session):
		return cls(id=s.id, mode=s.mode, study_date=s.study_date, started_at=s.started_at,
			ended_at=_end_raw(s.ended_at), title=s.title, metadata=s.metadata)

	def to_entity(self) -> Session:
		return Session(self.id, self.mode, self.study_date, self.started_at, _end_mark(self.ended_at),
			self.title, self.metadata)


class SegmentDoc(_Doc):
	id: str
	session_id: str
	subject_id: str
	kind: Literal["study", "solve", "review"] = "study"
	started_at: int
	ended_at: Optional[int] = None

	@classmethod
	def from_entity(cls, s: Segment):
		return cls(id=s.id, session_id=s.session_id, subject_id=subject_ref_key(s.subject), kind=s.kind,
			started_at=s.started_at, ended_at=_end_raw(s.ended_at))

	def to_entity(self) -> Segment:
		return Segment(self.id, self.session_id, parse_subject_ref(self.subject_id), self.kind,
			self.started_at, _end_mark(self.ended_at))


class QuestionRecordDoc(_Doc):
	id: str
	session_id: str
	segment_id: str
	subject_id: str
	question_no: int = Field(ge=1)
	duration_ms: int = Field(ge=0)
	started_at: int
	ended_at: int
	source: Literal["tap", "finish", "manual"] = "tap"

	@classmethod
	def from_entity(cls, r: QuestionRecord):
		return cls(id=r.id, session_id=r.session_id, segment_id=r.segment_id,
			subject_id=subject_ref_key(r.subject), question_no=r.question_no, duration_ms=r.duration_ms,
			started_at=r.started_at, ended_at=r.ended_at, source=r.source)

	def to_entity(self) -> QuestionRecord:
		return QuestionRecord(self.id, self.session_id, self.segment_id, parse_subject_ref(self.subject_id),
			self.question_no, self.duration_ms, self.started_at, self.ended_at, self.source)


class StopwatchDoc(_Doc):
	is_running: bool = False
	started_at: Optional[int] = None
	accumulated_ms: int = Field(0, ge=0)

	@classmethod
	def from_entity(cls, sw: Stopwatch):
		return cls(is_running=sw.is_running, started_at=sw.started_at, accumulated_ms=sw.accumulated_ms)

	def to_entity(self) -> Stopwatch:
		if self.started_at is None:
			return Stopwatch(accumulated_ms=self.accumulated_ms)
		return Stopwatch(self.is_running, self.started_at, self.accumulated_ms)


def load_entries(raw, model, what="entries"):
	"""Validate each item of a stored list with `model`; returns (entities, skipped count)."""
	out = []
	skipped = 0
	for item in raw if isinstance(raw, list) else []:
		try:
			out.append(model.model_validate(item).to_entity())
		except ValidationError as e:
			skipped += 1
			logger.debug("Invalid %s entry: %s", what, e)
	if skipped:
		logger.warning("Skipped %d invalid %s", skipped, what)
	return tuple(out), skipped


def _load_stopwatch(raw):
	if raw is None:
		return Stopwatch()
	try:
		return StopwatchDoc.model_validate(raw).to_entity()
	except ValidationError:
		logger.warning("Stored stopwatch is invalid, starting from zero")
		return Stopwatch()


def _optional_str(value):
	return value if isinstance(value, str) else None


def _drop_orphans(sessions, segments, records):
	session_ids = {s.id for s in sessions}
	kept_segments = tuple(g for g in segments if g.session_id in session_ids)
	segment_ids = {g.id for g in kept_segments}
	kept_records = tuple(r for r in records if r.segment_id in segment_ids and r.session_id in session_ids)
	orphans = len(segments) - len(kept_segments) + len(records) - len(kept_records)
	if orphans:
		logger.warning("Dropped %d entries whose session or segment is missing", orphans)
	return kept_segments, kept_records


def state_to_document(state: LogState) -> dict:
	"""Serialise a LogState into the persisted document's `state` object."""
	return {
		"subjects": [SubjectDoc.from_entity(s).model_dump(by_alias=True) for s in state.subjects],
		"stopwatch": StopwatchDoc.from_entity(state.stopwatch).model_dump(by_alias=True),
		"stopwatchStudyDate": state.stopwatch_study_date,
		"sessions": [SessionDoc.from_entity(s).model_dump(by_alias=True) for s in state.sessions],
		"segments": [SegmentDoc.from_entity(s).model_dump(by_alias=True) for s in state.segments],
		"questionRecords": [QuestionRecordDoc.from_entity(r).model_dump(by_alias=True) for r in state.question_records],
		"activeSubjectId": state.active_subject_id,
	}


def state_from_document(doc) -> LogState:
	"""Parse a current-version `state` object into a LogState."""
	if not isinstance(doc, dict):
		return LogState()
	subjects, _ = load_entries(doc.get("subjects"), SubjectDoc, "subjects")
	sessions, _ = load_entries(doc.get("sessions"), SessionDoc, "sessions")
	segments, _ = load_entries(doc.get("segments"), SegmentDoc, "segments")
	records, _ = load_entries(doc.get("questionRecords"), QuestionRecordDoc, "question records")
	segments, records = _drop_orphans(sessions, segments, records)
	return LogState(
		subjects=subjects,
		stopwatch=_load_stopwatch(doc.get("stopwatch")),
		stopwatch_study_date=_optional_str(doc.get("stopwatchStudyDate")),
		sessions=sessions,
		segments=segments,
		question_records=records,
		active_subject_id=_optional_str(doc.get("activeSubjectId")),
	)
