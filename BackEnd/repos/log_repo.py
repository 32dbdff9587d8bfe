import json
import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing

from BackEnd.core.paths import db_path
from BackEnd.core.clock import utc_now_iso

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
	key TEXT PRIMARY KEY,
	value TEXT NOT NULL
);
"""

def connect(dbfile=None):
	"""Open SQLite connection and ensure schema is applied."""
	conn = sqlite3.connect(dbfile or db_path())
	conn.row_factory = sqlite3.Row
	conn.executescript(SCHEMA)

	# Migration: ensure new columns exist on older DBs
	cur = conn.execute("PRAGMA table_info(kv)")
	cols = {r['name'] for r in cur.fetchall()}
	if 'updated_at' not in cols:
		conn.execute("ALTER TABLE kv ADD COLUMN updated_at TEXT")
		conn.commit()
	return conn

def read_raw(key, dbfile=None):
	"""Return the stored text for key, or None."""
	with closing(connect(dbfile)) as conn:
		row = conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
		return row["value"] if row else None

def read_json(key, dbfile=None):
	"""Return the decoded JSON value for key; None if absent or unreadable."""
	raw = read_raw(key, dbfile)
	if raw is None:
		return None
	try:
		return json.loads(raw)
	except ValueError:
		logger.warning("Stored value for %s is not valid JSON, ignoring it", key)
		return None

def write_json(key, value, dbfile=None):
	"""Insert or replace key with the JSON encoding of value."""
	with closing(connect(dbfile)) as conn, conn:
		conn.execute(
			"""
			INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
			ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
			""",
			(key, json.dumps(value, ensure_ascii=False), utc_now_iso())
		)

def delete_key(key, dbfile=None):
	"""Remove key. Returns True if a row was deleted."""
	with closing(connect(dbfile)) as conn, conn:
		cur = conn.execute("DELETE FROM kv WHERE key=?", (key,))
		return cur.rowcount > 0

def read_document(key, dbfile=None):
	"""Return (state, version) for a persisted document; ({}, 0) when absent."""
	doc = read_json(key, dbfile)
	if not isinstance(doc, dict):
		return {}, 0
	version = doc.get("version", 0)
	if not isinstance(version, int) or isinstance(version, bool):
		version = 0
	return doc.get("state") or {}, version

def write_document(key, state, version, dbfile=None):
	write_json(key, {"state": state, "version": version}, dbfile)


class DocumentWriter:
	"""Fire-and-forget document writes, applied one at a time in submission order."""

	def __init__(self, key, dbfile=None):
		self.key = key
		self.dbfile = dbfile
		self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pacetime-writer")
		self._lock = threading.Lock()
		self._pending = []

	def submit(self, state, version):
		"""Queue a write of (state, version); returns immediately."""
		with self._lock:
			fut = self._executor.submit(self._write, state, version)
			self._pending = [f for f in self._pending if not f.done()]
			self._pending.append(fut)
		return fut

	def _write(self, state, version):
		try:
			write_document(self.key, state, version, self.dbfile)
		except sqlite3.Error:
			logger.exception("Failed to persist %s", self.key)

	def flush(self):
		"""Block until every queued write has completed."""
		with self._lock:
			pending = list(self._pending)
		for fut in pending:
			fut.result()

	def close(self):
		self.flush()
		self._executor.shutdown(wait=True)
