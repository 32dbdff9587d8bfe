from PySide6.QtCore import QObject, Signal, QTimer
from BackEnd.services.log_store import LogStore

class TimerService(QObject):
	tick = Signal(int)  # emits elapsed milliseconds for the current study day
	state_changed = Signal(str)  # emits 'idle' or 'running'
	log_changed = Signal()  # any mutation of the study log

	def __init__(self, store: LogStore, interval_ms: int = 1000):
		super().__init__()
		self.store = store
		self._timer = QTimer(self)
		self._timer.setInterval(interval_ms)
		self._timer.timeout.connect(self._on_tick)
		if self.store.is_running:
			self._timer.start()

	@property
	def running(self):
		return self.store.is_running

	def start(self):
		"""Start the stopwatch for the selected subject; returns the new segment or None."""
		segment = self.store.start()
		if segment is None:
			return None
		self._timer.start()
		self.state_changed.emit('running')
		self.log_changed.emit()
		return segment

	def pause(self):
		stopwatch = self.store.pause()
		if stopwatch is None:
			return None
		self._timer.stop()
		self.state_changed.emit('idle')
		self.log_changed.emit()
		self.tick.emit(stopwatch.accumulated_ms)
		return stopwatch

	def pause_resume(self):
		if self.running:
			return self.pause()
		return self.start()

	def reset(self):
		self._timer.stop()
		stopwatch = self.store.reset()
		self.state_changed.emit('idle')
		self.log_changed.emit()
		self.tick.emit(0)
		return stopwatch

	def select_subject(self, subject_id):
		"""Switch subject; while running, time after the switch goes to a fresh segment."""
		changed = self.store.set_active_subject(subject_id)
		if changed:
			self.log_changed.emit()
		return changed

	def lap(self, duration_ms, started_at, ended_at, source="tap"):
		record = self.store.add_question_for_active_segment(duration_ms, started_at, ended_at, source)
		if record is not None:
			self.log_changed.emit()
		return record

	def undo_lap(self):
		segment = self.store.active_segment
		if segment is None:
			return None
		removed = self.store.undo_last_question_in_segment(segment.id)
		if removed is not None:
			self.log_changed.emit()
		return removed

	def _on_tick(self):
		self.store.sync_study_day()
		self.tick.emit(self.store.elapsed_ms())
