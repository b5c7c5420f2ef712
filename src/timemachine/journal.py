"""SQLite-backed append-only journal of watch sessions and file events."""

import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import List, Optional

from .exceptions import JournalError
from .models import JournalEvent, Session, now_ms

logger = logging.getLogger(__name__)


class Journal:
    """
    Durable ledger of sessions and (session, path, hash, timestamp) events.

    Features:
    - Append-only: events are never updated or deleted
    - Event ids strictly increase across restarts (recovered from MAX(id))
    - Write failures raise JournalError
    - Thread-safe operations
    """

    def __init__(self, db_path: Path):
        """
        Initialize the journal.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._closed = False
        self._next_event_id = 1

        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema and recover the id counter."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    start_time INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id);
                CREATE INDEX IF NOT EXISTS idx_events_path ON events(file_path);
            """)
            row = self._conn.execute("SELECT COALESCE(MAX(id), 0) FROM events").fetchone()
        except sqlite3.Error as e:
            raise JournalError(f"Failed to open journal {self.db_path}: {e}") from e

        self._next_event_id = row[0] + 1
        logger.debug("Journal opened at %s (next event id %d)", self.db_path, self._next_event_id)

    def _check_open(self) -> sqlite3.Connection:
        if self._closed or self._conn is None:
            raise JournalError("Journal is closed")
        return self._conn

    def create_session(self) -> str:
        """
        Create a new session.

        Returns:
            The session ID
        """
        session = Session(id=str(uuid.uuid4()), start_time=now_ms())

        with self._lock:
            conn = self._check_open()
            try:
                conn.execute(
                    "INSERT INTO sessions (id, start_time) VALUES (?, ?)",
                    (session.id, session.start_time),
                )
            except sqlite3.Error as e:
                raise JournalError(f"Failed to create session: {e}") from e

        return session.id

    def record_event(self, session_id: str, file_path: str, blob_hash: str) -> JournalEvent:
        """
        Record a file change event.

        Args:
            session_id: The session ID
            file_path: Path of the changed file relative to the project root
            blob_hash: The SHA-256 hash of the file content

        Returns:
            The recorded event

        Raises:
            JournalError: If the event could not be written
        """
        with self._lock:
            conn = self._check_open()
            event = JournalEvent(
                id=self._next_event_id,
                session_id=session_id,
                file_path=file_path,
                hash=blob_hash,
                timestamp=now_ms(),
            )
            try:
                conn.execute(
                    "INSERT INTO events (id, session_id, file_path, hash, timestamp) VALUES (?, ?, ?, ?, ?)",
                    (event.id, event.session_id, event.file_path, event.hash, event.timestamp),
                )
            except sqlite3.Error as e:
                raise JournalError(f"Failed to record event for {file_path}: {e}") from e

            self._next_event_id += 1
            return event

    def get_events_for_session(self, session_id: str) -> List[JournalEvent]:
        """Get all events for a session, oldest first."""
        return self._query_events(
            "SELECT * FROM events WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )

    def get_events_for_path(self, file_path: str) -> List[JournalEvent]:
        """Get all events for a file, most recent first."""
        return self._query_events(
            "SELECT * FROM events WHERE file_path = ? ORDER BY timestamp DESC, id DESC",
            (file_path,),
        )

    def get_latest_event_for_path(self, file_path: str) -> Optional[JournalEvent]:
        """Get the most recent event for a file, or None."""
        events = self._query_events(
            "SELECT * FROM events WHERE file_path = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
            (file_path,),
        )
        return events[0] if events else None

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            conn = self._check_open()
            try:
                row = conn.execute(
                    "SELECT id, start_time FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
            except sqlite3.Error as e:
                raise JournalError(f"Failed to read session: {e}") from e
        return Session(id=row["id"], start_time=row["start_time"]) if row else None

    def list_sessions(self) -> List[Session]:
        """All sessions, most recent first."""
        with self._lock:
            conn = self._check_open()
            try:
                rows = conn.execute(
                    "SELECT id, start_time FROM sessions ORDER BY start_time DESC, rowid DESC"
                ).fetchall()
            except sqlite3.Error as e:
                raise JournalError(f"Failed to list sessions: {e}") from e
        return [Session(id=row["id"], start_time=row["start_time"]) for row in rows]

    def event_count(self) -> int:
        with self._lock:
            conn = self._check_open()
            try:
                return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            except sqlite3.Error as e:
                raise JournalError(f"Failed to count events: {e}") from e

    def _query_events(self, sql: str, params: tuple) -> List[JournalEvent]:
        with self._lock:
            conn = self._check_open()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise JournalError(f"Failed to query events: {e}") from e

        return [
            JournalEvent(
                id=row["id"],
                session_id=row["session_id"],
                file_path=row["file_path"],
                hash=row["hash"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the journal and release resources."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
