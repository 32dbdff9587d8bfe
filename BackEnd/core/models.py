"""Entity types for the study log.

Timestamps are epoch milliseconds, study dates are 'YYYY-MM-DD' strings.
The stored document form lives in BackEnd.core.documents.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

PROBLEM_SOLVING = "problem-solving"
MOCK_EXAM = "mock-exam"
SESSION_MODES = (PROBLEM_SOLVING, MOCK_EXAM)

SEGMENT_KINDS = ("study", "solve", "review")
RECORD_SOURCES = ("tap", "finish", "manual")

REVIEW_TAG = "__review__"
ROOM_EXAM_TAG = "__room_exam__"
LEGACY_CATEGORY_PREFIX = "__legacy_category__:"


# --- end marker -------------------------------------------------------------

@dataclass(frozen=True)
class Open:
	"""Still in progress."""


@dataclass(frozen=True)
class Closed:
	at: int


OPEN = Open()
EndMark = Union[Open, Closed]


def is_open(end: EndMark) -> bool:
	return isinstance(end, Open)


def end_or(end: EndMark, default: int) -> int:
	"""Return the closing timestamp, or `default` while still open."""
	if isinstance(end, Closed):
		return end.at
	return default


# --- subject reference ------------------------------------------------------

@dataclass(frozen=True)
class RealSubject:
	id: str


@dataclass(frozen=True)
class ReviewBucket:
	pass


@dataclass(frozen=True)
class LegacyCategory:
	name: str


@dataclass(frozen=True)
class RoomExam:
	pass


SubjectRef = Union[RealSubject, ReviewBucket, LegacyCategory, RoomExam]


def parse_subject_ref(raw) -> SubjectRef:
	"""Turn a stored subject id (real id or sentinel tag) into a SubjectRef."""
	raw = str(raw)
	if raw == REVIEW_TAG:
		return ReviewBucket()
	if raw == ROOM_EXAM_TAG:
		return RoomExam()
	if raw.startswith(LEGACY_CATEGORY_PREFIX):
		return LegacyCategory(raw[len(LEGACY_CATEGORY_PREFIX):])
	return RealSubject(raw)


def subject_ref_key(ref: SubjectRef) -> str:
	"""Inverse of parse_subject_ref; also used as a grouping key."""
	if isinstance(ref, RealSubject):
		return ref.id
	if isinstance(ref, ReviewBucket):
		return REVIEW_TAG
	if isinstance(ref, RoomExam):
		return ROOM_EXAM_TAG
	if isinstance(ref, LegacyCategory):
		return LEGACY_CATEGORY_PREFIX + ref.name
	raise TypeError(f"not a subject ref: {ref!r}")


# --- entities ---------------------------------------------------------------

@dataclass(frozen=True)
class Subject:
	id: str
	name: str
	order: int
	is_archived: bool = False
	created_at: int = 0
	updated_at: int = 0


@dataclass(frozen=True)
class Session:
	id: str
	mode: str
	study_date: str
	started_at: int
	ended_at: EndMark = OPEN
	title: Optional[str] = None
	metadata: Optional[dict] = None


@dataclass(frozen=True)
class Segment:
	id: str
	session_id: str
	subject: SubjectRef
	kind: str
	started_at: int
	ended_at: EndMark = OPEN


@dataclass(frozen=True)
class QuestionRecord:
	id: str
	session_id: str
	segment_id: str
	subject: SubjectRef
	question_no: int
	duration_ms: int
	started_at: int
	ended_at: int
	source: str = "tap"


@dataclass(frozen=True)
class Stopwatch:
	is_running: bool = False
	started_at: Optional[int] = None
	accumulated_ms: int = 0


@dataclass(frozen=True)
class LogState:
	subjects: Tuple[Subject, ...] = ()
	stopwatch: Stopwatch = field(default_factory=Stopwatch)
	stopwatch_study_date: Optional[str] = None
	sessions: Tuple[Session, ...] = ()
	segments: Tuple[Segment, ...] = ()
	question_records: Tuple[QuestionRecord, ...] = ()
	active_subject_id: Optional[str] = None

	@property
	def active_session(self) -> Optional[Session]:
		for s in self.sessions:
			if is_open(s.ended_at):
				return s
		return None

	@property
	def active_segment(self) -> Optional[Segment]:
		for seg in self.segments:
			if is_open(seg.ended_at):
				return seg
		return None
