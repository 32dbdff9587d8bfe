import logging
import os

APP_NAME = "PaceTime"

# Persisted document
SCHEMA_VERSION = 2
STORAGE_KEY = "pacetime-storage"
LEGACY_EXAM_SESSIONS_KEY = "@pacetime_sessions"

# Study day starts at 06:00 local time
STUDY_DAY_SHIFT_MS = 6 * 60 * 60 * 1000
DAY_MS = 24 * 60 * 60 * 1000

# Legacy boundary inference
NEW_SESSION_GAP_MS = 90 * 60 * 1000
NEW_SEGMENT_GAP_MS = 12 * 60 * 1000

# Analytics
DEFAULT_DAILY_DAYS = 14
WEEK_DAYS = 7
RECENT_MOCK_EXAMS = 6

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def data_dir_override():
	"""Return PACETIME_DATA_DIR if set, else None."""
	return os.environ.get("PACETIME_DATA_DIR") or None


def setup_logging(level=None):
	"""Configure root logging for scripts; level falls back to PACETIME_LOG_LEVEL."""
	level = level or os.environ.get("PACETIME_LOG_LEVEL", "INFO")
	logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
