"""Tests for the SQLite track store."""

import sqlite3

import pytest

from track_cache.core.database import SCHEMA_VERSION, TrackStore
from track_cache.core.errors import StoreUnavailableError
from track_cache.domain.library.hashing import fingerprint
from track_cache.domain.library.models import Track, uid_for_fingerprint


def make_track(name: str, **fields) -> Track:
    digest = fingerprint(name.encode("utf-8"))
    return Track(
        fingerprint=digest,
        uid=uid_for_fingerprint(digest),
        path=f"/music/{name}.flac",
        title=name,
        format="flac",
        **fields,
    )


class TestInit:
    """Tests for schema creation and migrations."""

    def test_creates_database(self, tmp_path):
        db_path = tmp_path / "nested" / "tracks.db"
        store = TrackStore(db_path).init()
        assert db_path.exists()
        assert store.count() == 0

    def test_idempotent(self, store):
        store.bulk_insert([make_track("a")])
        store.init()
        assert store.count() == 1

    def test_records_schema_version(self, store):
        with store.connection() as conn:
            row = conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
        assert row["v"] == SCHEMA_VERSION

    def test_migrates_v1_database(self, tmp_path):
        """A v1 database without audio properties gains bitrate and sample_rate."""
        db_path = tmp_path / "old.db"
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY)")
        conn.execute("INSERT INTO schema_version (version) VALUES (1)")
        conn.execute(
            """
            CREATE TABLE tracks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                fingerprint TEXT NOT NULL UNIQUE,
                uid TEXT NOT NULL UNIQUE,
                path TEXT NOT NULL,
                title TEXT, artist TEXT, artists TEXT, album_artist TEXT,
                album TEXT, genre TEXT, composer TEXT, comment TEXT,
                year INTEGER, original_year INTEGER, duration REAL,
                artwork TEXT NOT NULL DEFAULT '',
                file_size INTEGER NOT NULL DEFAULT 0, format TEXT,
                created_at REAL, modified_at REAL, updated_at REAL
            )
        """
        )
        conn.commit()
        conn.close()

        store = TrackStore(db_path).init()
        store.bulk_insert([make_track("a", bitrate=320000, sample_rate=44100)])
        track = store.find_all()[0]
        assert track.bitrate == 320000
        assert track.sample_rate == 44100

    def test_unusable_path_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StoreUnavailableError):
            TrackStore(blocker / "tracks.db").init()

    def test_failed_journal_mode_closes_connection(self, tmp_path, monkeypatch):
        class LockedConnection:
            closed = False

            def execute(self, sql):
                raise sqlite3.OperationalError("database is locked")

            def close(self):
                self.closed = True

        conn = LockedConnection()
        monkeypatch.setattr(sqlite3, "connect", lambda *args, **kwargs: conn)

        with pytest.raises(StoreUnavailableError):
            with TrackStore(tmp_path / "tracks.db").connection():
                pass
        assert conn.closed


class TestReads:
    """Tests for lookups."""

    def test_find_all_in_insertion_order(self, store):
        tracks = [make_track(name) for name in ("c", "a", "b")]
        store.bulk_insert(tracks)
        assert store.find_all() == tracks

    def test_round_trip_all_fields(self, store):
        track = make_track(
            "full",
            artist="Artist",
            artists="Artist; Guest",
            album_artist="Artist",
            album="Album",
            genre="Ambient; Drone",
            composer="Composer",
            comment="note",
            year=2001,
            original_year=1995,
            duration=201.5,
            bitrate=900000,
            sample_rate=48000,
            artwork="iVBORw0KGgo=",
            file_size=1234,
            created_at=1.5,
            modified_at=2.5,
            updated_at=3.5,
        )
        store.bulk_insert([track])
        assert store.find_by_uid(track.uid) == track

    def test_find_by_uid_unknown(self, store):
        assert store.find_by_uid("00000000-0000-0000-0000-000000000000") is None

    def test_find_by_fingerprint(self, store):
        track = make_track("a")
        store.bulk_insert([track])
        assert store.find_by_fingerprint(track.fingerprint) == track
        assert store.find_by_fingerprint(fingerprint(b"other")) is None

    def test_find_by_path(self, store):
        track = make_track("a")
        store.bulk_insert([track])
        assert store.find_by_path("/music/a.flac") == [track]
        assert store.find_by_path("/music/none.flac") == []

    def test_fingerprints_and_is_cached(self, store):
        tracks = [make_track("a"), make_track("b")]
        store.bulk_insert(tracks)
        assert store.fingerprints() == {t.fingerprint for t in tracks}
        assert store.is_cached(tracks[0].fingerprint)
        assert not store.is_cached(fingerprint(b"c"))


class TestWrites:
    """Tests for inserts, upserts, deletes and truncation."""

    def test_bulk_insert_chunks(self, store):
        tracks = [make_track(f"t{i}") for i in range(7)]
        failures = store.bulk_insert(tracks, chunk_size=3)
        assert failures == []
        assert store.count() == 7

    def test_failed_chunk_rolled_back_others_kept(self, store):
        """A chunk with a duplicate fingerprint fails alone; earlier and later chunks persist."""
        existing = make_track("dup")
        store.bulk_insert([existing])

        tracks = [make_track("a"), make_track("b"), existing, make_track("c"), make_track("d")]
        failures = store.bulk_insert(tracks, chunk_size=2)

        assert len(failures) == 1
        assert (failures[0].start, failures[0].end) == (2, 4)
        assert "UNIQUE" in failures[0].reason
        stored = {t.title for t in store.find_all()}
        assert stored == {"dup", "a", "b", "d"}

    def test_bulk_insert_empty(self, store):
        assert store.bulk_insert([]) == []

    def test_upsert_replaces(self, store):
        track = make_track("a")
        store.bulk_insert([track])
        store.upsert(track._replace(path="/music/moved/a.flac"))
        assert store.count() == 1
        assert store.find_by_uid(track.uid).path == "/music/moved/a.flac"

    def test_delete_by_fingerprints(self, store):
        tracks = [make_track("a"), make_track("b")]
        store.bulk_insert(tracks)
        assert store.delete_by_fingerprints([tracks[0].fingerprint]) == 1
        assert store.find_all() == [tracks[1]]
        assert store.delete_by_fingerprints([]) == 0

    def test_truncate(self, store):
        store.bulk_insert([make_track("a"), make_track("b")])
        store.truncate()
        assert store.count() == 0
        assert store.find_all() == []
