import logging

from BackEnd.core.clock import now_ms
from BackEnd.core.config import DEFAULT_DAILY_DAYS, SCHEMA_VERSION, STORAGE_KEY
from BackEnd.core.documents import state_from_document, state_to_document
from BackEnd.core.models import LogState
from BackEnd.repos import log_repo
from BackEnd.services import migration, transitions
from BackEnd.services.analytics import build_analytics_snapshot, process_analytics
from BackEnd.services.records_index import build_records_index

logger = logging.getLogger(__name__)


def load_state(dbfile=None, now=None):
	"""Load the persisted log, migrating older schemas; returns (LogState, MigrationReport or None)."""
	persisted, version = log_repo.read_document(STORAGE_KEY, dbfile)
	if version >= SCHEMA_VERSION:
		return state_from_document(persisted), None
	now = now if now is not None else now_ms()
	legacy_exams = migration.load_legacy_exam_sessions(dbfile)
	state, report = migration.migrate_document(persisted, version, now, legacy_exams)
	log_repo.write_document(STORAGE_KEY, state_to_document(state), SCHEMA_VERSION, dbfile)
	return state, report


class LogStore:
	"""Holds the study log and applies one transition per UI operation.

	The clock is injected so tests can drive time explicitly. Every mutation is
	queued to the writer (if any); reads never touch storage.
	"""

	def __init__(self, state=None, clock=now_ms, writer=None):
		self.state = state if state is not None else LogState()
		self.clock = clock
		self.writer = writer
		self.migration_report = None
		self._cache = {}

	@classmethod
	def bootstrap(cls, dbfile=None, clock=now_ms):
		"""Load, migrate and recover the persisted log, then hand back a ready store."""
		state, report = load_state(dbfile, clock())
		recovered = transitions.recover_after_load(state)
		if recovered != state:
			logger.info("Closed entries left open by a previous run")
		store = cls(recovered, clock, log_repo.DocumentWriter(STORAGE_KEY, dbfile))
		store.migration_report = report
		if recovered != state:
			store._persist()
		return store

	# --- plumbing ---------------------------------------------------------

	def _commit(self, op, new_state, result):
		if new_state is not self.state:
			self.state = new_state
			self._cache.clear()
			self._persist()
			logger.debug("%s -> %r", op, result)
		return result

	def _persist(self):
		if self.writer is not None:
			self.writer.submit(state_to_document(self.state), SCHEMA_VERSION)

	def flush(self):
		if self.writer is not None:
			self.writer.flush()

	def close(self):
		if self.writer is not None:
			self.writer.close()

	# --- state shortcuts ---------------------------------------------------

	@property
	def stopwatch(self):
		return self.state.stopwatch

	@property
	def is_running(self):
		return self.state.stopwatch.is_running

	@property
	def active_session(self):
		return self.state.active_session

	@property
	def active_segment(self):
		return self.state.active_segment

	@property
	def active_subject_id(self):
		return self.state.active_subject_id

	def elapsed_ms(self, now=None):
		return transitions.elapsed_ms(self.state, now if now is not None else self.clock())

	def sync_study_day(self):
		new_state = transitions.sync_study_day(self.state, self.clock())
		return self._commit("sync_study_day", new_state, new_state.stopwatch)

	# --- stopwatch ---------------------------------------------------------

	def start(self):
		return self._commit("start", *transitions.start(self.state, self.clock()))

	def pause(self):
		return self._commit("pause", *transitions.pause(self.state, self.clock()))

	def reset(self):
		return self._commit("reset", *transitions.reset(self.state, self.clock()))

	def set_active_subject(self, subject_id):
		return self._commit("set_active_subject", *transitions.set_active_subject(self.state, subject_id, self.clock()))

	# --- sessions & segments -----------------------------------------------

	def start_session(self, mode, title=None, metadata=None, started_at=None):
		return self._commit("start_session", *transitions.start_session(
			self.state, mode, self.clock(), title=title, metadata=metadata, started_at=started_at))

	def end_session(self):
		return self._commit("end_session", *transitions.end_session(self.state, self.clock()))

	def start_segment(self, session_id, subject, kind, started_at=None):
		return self._commit("start_segment", *transitions.start_segment(
			self.state, session_id, subject, kind, self.clock(), started_at=started_at))

	def end_segment(self, segment_id, ended_at=None):
		return self._commit("end_segment", *transitions.end_segment(
			self.state, segment_id, self.clock(), ended_at=ended_at))

	def ingest_session(self, session, segments=(), records=()):
		return self._commit("ingest_session", *transitions.ingest_session(self.state, session, segments, records))

	# --- question records --------------------------------------------------

	def add_question_record(self, session_id, segment_id, subject, duration_ms, started_at, ended_at, source="tap"):
		return self._commit("add_question_record", *transitions.add_question_record(
			self.state, session_id, segment_id, subject, duration_ms, started_at, ended_at, source))

	def add_question_for_active_segment(self, duration_ms, started_at, ended_at, source="tap"):
		return self._commit("add_question_for_active_segment", *transitions.add_question_for_active_segment(
			self.state, duration_ms, started_at, ended_at, source))

	def undo_last_question_in_segment(self, segment_id):
		return self._commit("undo_last_question_in_segment",
			*transitions.undo_last_question_in_segment(self.state, segment_id))

	# --- subjects ----------------------------------------------------------

	def add_subject(self, name):
		return self._commit("add_subject", *transitions.add_subject(self.state, name, self.clock()))

	def rename_subject(self, subject_id, name):
		return self._commit("rename_subject", *transitions.rename_subject(self.state, subject_id, name, self.clock()))

	def archive_subject(self, subject_id):
		return self._commit("archive_subject", *transitions.archive_subject(self.state, subject_id, self.clock()))

	def list_subjects(self, include_archived=False):
		subjects = [s for s in self.state.subjects if include_archived or not s.is_archived]
		return sorted(subjects, key=lambda s: s.order)

	# --- read models -------------------------------------------------------

	def records_index(self, now=None):
		now = now if now is not None else self.clock()
		cached = self._cache.get("index")
		if cached is None or cached[0] != now:
			st = self.state
			cached = self._cache["index"] = (now, build_records_index(st.sessions, st.segments, st.question_records, now))
		return cached[1]

	def analytics(self, daily_days=DEFAULT_DAILY_DAYS, now=None):
		now = now if now is not None else self.clock()
		key = (now, daily_days)
		cached = self._cache.get("snapshot")
		if cached is None or cached[0] != key:
			st = self.state
			cached = self._cache["snapshot"] = (key, build_analytics_snapshot(
				st.sessions, st.segments, st.question_records, st.subjects, now, daily_days))
		return cached[1]

	def range_analytics(self, range_key="today", subject_filter="all", now=None):
		st = self.state
		now = now if now is not None else self.clock()
		return process_analytics(st.sessions, st.segments, st.question_records, range_key, subject_filter, now)
