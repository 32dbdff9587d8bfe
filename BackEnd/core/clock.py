import time
from datetime import datetime, timezone

from BackEnd.core.config import DAY_MS, STUDY_DAY_SHIFT_MS


def now_ms() -> int:
	"""Return current wall-clock time as epoch milliseconds."""
	return int(time.time() * 1000)


def utc_now_iso():
	"""Return current UTC time as ISO8601 string (no microseconds)."""
	return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def study_date_key(timestamp_ms: int) -> str:
	"""Return the local study date (YYYY-MM-DD) for a timestamp; the day rolls over at 06:00."""
	shifted = datetime.fromtimestamp((timestamp_ms - STUDY_DAY_SHIFT_MS) / 1000)
	return shifted.date().isoformat()


def recent_study_dates(now: int, days: int) -> list:
	"""Return the last `days` study-date keys, oldest first, ending with today's."""
	return [study_date_key(now - i * DAY_MS) for i in range(days - 1, -1, -1)]


def fmt_duration_ms(ms: int) -> str:
	"""Format a millisecond duration as '1h 2m 3s', dropping leading zero units."""
	total = max(0, int(ms) // 1000)
	h, m, s = total // 3600, (total % 3600) // 60, total % 60
	if h:
		return f"{h}h {m}m {s}s"
	if m:
		return f"{m}m {s}s"
	return f"{s}s"
