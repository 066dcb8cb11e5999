"""
SQLite track store for the track cache
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Set

from loguru import logger

from ..domain.library.models import TRACK_COLUMNS, Track
from .errors import BatchPersistFailedError, StoreUnavailableError

# Database schema version for migrations
SCHEMA_VERSION = 2

DEFAULT_CHUNK_SIZE = 200

_INSERT_SQL = (
    f"INSERT INTO tracks ({', '.join(TRACK_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in TRACK_COLUMNS)})"
)
_UPSERT_SQL = (
    f"INSERT OR REPLACE INTO tracks ({', '.join(TRACK_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in TRACK_COLUMNS)})"
)


def migrate_database(conn: sqlite3.Connection, current_version: int) -> None:
    """Migrate database from current_version to latest schema."""
    if current_version < 2:
        # Migration from v1 to v2: technical audio properties
        for column, col_type in (("bitrate", "INTEGER"), ("sample_rate", "INTEGER")):
            try:
                conn.execute(f"ALTER TABLE tracks ADD COLUMN {column} {col_type}")
            except sqlite3.OperationalError as e:
                if "duplicate column name" not in str(e).lower():
                    raise

        conn.commit()


class TrackStore:
    """Persistent store of track records keyed by content fingerprint.

    Writes are serialized through an in-process lock; SQLite's WAL mode lets
    readers query while a rebuild is writing. Truncate and each insert chunk
    commit separately, so a reader may observe an empty or partially filled
    store mid-rebuild.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._write_lock = threading.RLock()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper cleanup and concurrency support."""
        conn = None
        try:
            # Timeout of 30s covers long-running batch writes from a rebuild
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row  # Enable dict-like access
            # WAL mode enables concurrent reads during writes
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            raise StoreUnavailableError(str(self.db_path), str(e)) from e

        try:
            yield conn
        finally:
            conn.close()

    def init(self) -> "TrackStore":
        """Create the schema (idempotent) and run pending migrations.

        Raises:
            StoreUnavailableError: If the database cannot be created or opened
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(str(self.db_path), str(e)) from e

        with self._write_lock, self.connection() as conn:
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS tracks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        fingerprint TEXT NOT NULL UNIQUE,
                        uid TEXT NOT NULL UNIQUE,
                        path TEXT NOT NULL,
                        title TEXT,
                        artist TEXT,
                        artists TEXT,
                        album_artist TEXT,
                        album TEXT,
                        genre TEXT,
                        composer TEXT,
                        comment TEXT,
                        year INTEGER,
                        original_year INTEGER,
                        duration REAL,
                        bitrate INTEGER,
                        sample_rate INTEGER,
                        artwork TEXT NOT NULL DEFAULT '',
                        file_size INTEGER NOT NULL DEFAULT 0,
                        format TEXT,
                        created_at REAL,
                        modified_at REAL,
                        updated_at REAL
                    )
                """)

                conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_path ON tracks (path)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_artist ON tracks (artist)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_album ON tracks (album)")

                # Use MAX to handle legacy databases with multiple version rows
                cursor = conn.execute("SELECT MAX(version) as version FROM schema_version")
                row = cursor.fetchone()
                current_version = row["version"] if row and row["version"] else 0
                cursor.close()

                if current_version < SCHEMA_VERSION:
                    migrate_database(conn, current_version)

                conn.execute("DELETE FROM schema_version")
                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(str(self.db_path), str(e)) from e

        logger.debug(f"Track store ready: {self.db_path} (schema v{SCHEMA_VERSION})")
        return self

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self.connection() as conn:
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailableError(str(self.db_path), str(e)) from e

    def find_all(self) -> List[Track]:
        """Return every cached track in insertion order."""
        rows = self._query("SELECT * FROM tracks ORDER BY id")
        return [Track.from_row(row) for row in rows]

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Track]:
        """Get a track by content fingerprint."""
        rows = self._query("SELECT * FROM tracks WHERE fingerprint = ?", (fingerprint,))
        return Track.from_row(rows[0]) if rows else None

    def find_by_uid(self, uid: str) -> Optional[Track]:
        """Get a track by uid; None when the uid is unknown."""
        rows = self._query("SELECT * FROM tracks WHERE uid = ?", (uid,))
        return Track.from_row(rows[0]) if rows else None

    def find_by_path(self, path: str) -> List[Track]:
        """Get tracks last seen at a path (a path may hold several historical contents)."""
        rows = self._query("SELECT * FROM tracks WHERE path = ? ORDER BY id", (path,))
        return [Track.from_row(row) for row in rows]

    def is_cached(self, fingerprint: str) -> bool:
        """Check whether a fingerprint is already stored."""
        rows = self._query("SELECT 1 FROM tracks WHERE fingerprint = ? LIMIT 1", (fingerprint,))
        return bool(rows)

    def fingerprints(self) -> Set[str]:
        """Get all stored fingerprints in one query (avoids N+1 dedup lookups)."""
        return {row["fingerprint"] for row in self._query("SELECT fingerprint FROM tracks")}

    def count(self) -> int:
        """Number of cached tracks."""
        return self._query("SELECT COUNT(*) AS n FROM tracks")[0]["n"]

    def bulk_insert(
        self, tracks: Sequence[Track], chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> List[BatchPersistFailedError]:
        """Insert tracks in chunks, one transaction per chunk.

        A failing chunk is rolled back and reported; later chunks are still
        attempted.

        Args:
            tracks: Records to insert
            chunk_size: Records per transaction

        Returns:
            One BatchPersistFailedError per failed chunk (empty on full success)

        Raises:
            StoreUnavailableError: If the database cannot be opened at all
        """
        failures: List[BatchPersistFailedError] = []
        if not tracks:
            return failures

        with self._write_lock, self.connection() as conn:
            for start in range(0, len(tracks), chunk_size):
                chunk = tracks[start : start + chunk_size]
                end = start + len(chunk)
                try:
                    conn.executemany(_INSERT_SQL, [tuple(t) for t in chunk])
                    conn.commit()
                    logger.debug(f"Persisted tracks {start}-{end}")
                except sqlite3.Error as e:
                    conn.rollback()
                    failure = BatchPersistFailedError(start, end, str(e))
                    logger.error(str(failure))
                    failures.append(failure)

        return failures

    def upsert(self, track: Track) -> None:
        """Insert a track, replacing any record with the same fingerprint."""
        with self._write_lock, self.connection() as conn:
            try:
                conn.execute(_UPSERT_SQL, tuple(track))
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(str(self.db_path), str(e)) from e

    def delete_by_fingerprints(self, fingerprints: Sequence[str]) -> int:
        """Delete records by fingerprint, returning how many were removed."""
        if not fingerprints:
            return 0
        with self._write_lock, self.connection() as conn:
            try:
                cursor = conn.executemany(
                    "DELETE FROM tracks WHERE fingerprint = ?",
                    [(fp,) for fp in fingerprints],
                )
                conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                raise StoreUnavailableError(str(self.db_path), str(e)) from e

    def truncate(self) -> None:
        """Remove all records.

        Raises:
            StoreUnavailableError: If the delete fails
        """
        with self._write_lock, self.connection() as conn:
            try:
                conn.execute("DELETE FROM tracks")
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(str(self.db_path), str(e)) from e
        logger.info("Track store truncated")
