"""Tests for the ingestion pipeline: rebuild, incremental add, batching, cancellation."""

import threading
from pathlib import Path

import pytest

from track_cache.core.config import Config
from track_cache.core.errors import (
    BatchPersistFailedError,
    PathInvalidError,
    RebuildInProgressError,
    StoreUnavailableError,
)
from track_cache.domain.library.hashing import fingerprint
from track_cache.domain.library.ingest import IngestionPipeline, PipelineState
from track_cache.notifications import DoneEvent


def make_pipeline(store, notifier=None, batch_size=200, workers=1) -> IngestionPipeline:
    config = Config()
    config.cache.batch_size = batch_size
    config.ingest.workers = workers
    return IngestionPipeline(store, notifier=notifier, config=config)


def populate(root: Path, count: int, make_flac) -> None:
    root.mkdir(parents=True, exist_ok=True)
    for i in range(count):
        (root / f"track{i:03d}.flac").write_bytes(make_flac({"TITLE": f"Track {i}"}))


class TestRebuild:
    """Tests for full rebuilds."""

    def test_mixed_directory(self, store, recorder, library):
        """a.flac, b.txt and c.mp3 give two records; the corrupt mp3 keeps empty tags."""
        report = make_pipeline(store, recorder).rebuild([str(library)])

        assert len(report.tracks) == 2
        by_name = {Path(t.path).name: t for t in report.tracks}
        assert set(by_name) == {"a.flac", "c.mp3"}
        assert by_name["a.flac"].title == "Song A"
        assert by_name["a.flac"].year == 2001
        assert by_name["c.mp3"].title is None
        assert by_name["c.mp3"].fingerprint == fingerprint((library / "c.mp3").read_bytes())
        assert len(report.parse_errors) == 1

        assert store.count() == 2
        assert report.inserted == 2
        assert report.state is PipelineState.DONE

    def test_progress_then_single_done(self, store, recorder, library):
        make_pipeline(store, recorder).rebuild([str(library)])

        progress = recorder.progress
        assert [e.current for e in progress] == [1, 2]
        assert all(e.total == 2 for e in progress)
        assert [Path(e.path).name for e in progress] == ["a.flac", "c.mp3"]
        assert recorder.events[-1] == DoneEvent(total=2, inserted=2, cancelled=False)
        assert len(recorder.done) == 1

    def test_rebuild_twice_is_stable(self, store, library):
        pipeline = make_pipeline(store)
        first = pipeline.rebuild([str(library)])
        second = pipeline.rebuild([str(library)])

        assert first.fingerprints == second.fingerprints
        assert {t.uid for t in store.find_all()} == {t.uid for t in first.tracks}
        assert store.count() == 2

    def test_rebuild_replaces_previous_contents(self, store, tmp_path, make_flac):
        old = tmp_path / "old"
        new = tmp_path / "new"
        populate(old, 3, make_flac)
        new.mkdir()
        (new / "only.flac").write_bytes(make_flac({"TITLE": "Only"}))

        pipeline = make_pipeline(store)
        pipeline.rebuild([str(old)])
        pipeline.rebuild([str(new)])

        assert [t.title for t in store.find_all()] == ["Only"]

    def test_empty_directory_empties_store(self, store, recorder, tmp_path, library):
        pipeline = make_pipeline(store, recorder)
        pipeline.rebuild([str(library)])
        empty = tmp_path / "empty"
        empty.mkdir()

        report = pipeline.rebuild([str(empty)])

        assert report.tracks == []
        assert store.count() == 0
        assert recorder.events[-1] == DoneEvent(total=0, inserted=0, cancelled=False)

    def test_duplicate_content_persisted_once(self, store, tmp_path, make_flac):
        root = tmp_path / "dups"
        root.mkdir()
        data = make_flac({"TITLE": "Same"})
        (root / "a.flac").write_bytes(data)
        (root / "b.flac").write_bytes(data)

        report = make_pipeline(store).rebuild([str(root)])

        assert len(report.tracks) == 2
        assert report.skipped == 1
        stored = store.find_all()
        assert len(stored) == 1
        assert Path(stored[0].path).name == "a.flac"

    def test_invalid_root_leaves_store_untouched(self, store, recorder, library, tmp_path):
        pipeline = make_pipeline(store, recorder)
        pipeline.rebuild([str(library)])

        with pytest.raises(PathInvalidError):
            pipeline.rebuild([str(tmp_path / "missing")])

        assert store.count() == 2
        assert pipeline.state is PipelineState.ERRORED
        assert len(recorder.errors) == 1

    def test_unreadable_file_dropped_but_reported(self, store, recorder, library, monkeypatch):
        """A file that cannot be read still advances progress but yields no record."""
        import track_cache.domain.library.metadata as metadata_module
        from track_cache.core.errors import HashingFailedError

        real_read = metadata_module.read_file_bytes

        def flaky_read(path):
            if path.endswith("a.flac"):
                raise HashingFailedError(path, "vanished")
            return real_read(path)

        monkeypatch.setattr(metadata_module, "read_file_bytes", flaky_read)

        report = make_pipeline(store, recorder).rebuild([str(library)])

        assert [Path(t.path).name for t in report.tracks] == ["c.mp3"]
        assert len(report.hash_errors) == 1
        assert [e.current for e in recorder.progress] == [1, 2]
        assert recorder.events[-1] == DoneEvent(total=2, inserted=1, cancelled=False)

    def test_parallel_workers_keep_order(self, store, recorder, tmp_path, make_flac):
        root = tmp_path / "many"
        populate(root, 12, make_flac)

        report = make_pipeline(store, recorder, batch_size=5, workers=4).rebuild([str(root)])

        assert [e.current for e in recorder.progress] == list(range(1, 13))
        assert [t.title for t in report.tracks] == [f"Track {i}" for i in range(12)]
        assert [t.title for t in store.find_all()] == [f"Track {i}" for i in range(12)]


class TestBatching:
    """Tests for batched persistence."""

    def test_records_written_in_batches(self, store, tmp_path, make_flac, monkeypatch):
        root = tmp_path / "many"
        populate(root, 7, make_flac)
        calls = []
        real_insert = store.bulk_insert

        def spy(tracks, chunk_size=200):
            calls.append(len(tracks))
            return real_insert(tracks, chunk_size=chunk_size)

        monkeypatch.setattr(store, "bulk_insert", spy)
        report = make_pipeline(store, batch_size=3).rebuild([str(root)])

        assert calls == [3, 3, 1]
        assert report.inserted == 7
        assert store.count() == 7

    def test_failed_batch_reported_others_persisted(self, store, tmp_path, make_flac, monkeypatch):
        root = tmp_path / "many"
        populate(root, 6, make_flac)
        real_insert = store.bulk_insert
        calls = []

        def failing_second(tracks, chunk_size=200):
            calls.append(len(tracks))
            if len(calls) == 2:
                return [BatchPersistFailedError(0, len(tracks), "disk full")]
            return real_insert(tracks, chunk_size=chunk_size)

        monkeypatch.setattr(store, "bulk_insert", failing_second)
        report = make_pipeline(store, batch_size=2).rebuild([str(root)])

        assert len(report.tracks) == 6
        assert report.inserted == 4
        assert [(e.start, e.end) for e in report.batch_errors] == [(2, 4)]
        assert [t.title for t in store.find_all()] == ["Track 0", "Track 1", "Track 4", "Track 5"]


class TestIncrementalAdd:
    """Tests for add mode."""

    def test_skips_cached_content(self, store, tmp_path, make_flac):
        first = tmp_path / "first"
        populate(first, 2, make_flac)
        second = tmp_path / "second"
        second.mkdir()
        (second / "copy.flac").write_bytes((first / "track000.flac").read_bytes())
        (second / "fresh.flac").write_bytes(make_flac({"TITLE": "Fresh"}))

        pipeline = make_pipeline(store)
        pipeline.add([str(first)])
        report = pipeline.add([str(second)])

        assert [t.title for t in report.new_tracks] == ["Fresh"]
        assert report.skipped == 1
        assert store.count() == 3

    def test_does_not_truncate(self, store, tmp_path, make_flac):
        first = tmp_path / "first"
        populate(first, 2, make_flac)
        other = tmp_path / "other"
        other.mkdir()

        pipeline = make_pipeline(store)
        pipeline.add([str(first)])
        pipeline.add([str(other)])

        assert store.count() == 2


class TestCancellation:
    """Tests for cooperative cancellation and single-flight runs."""

    def test_cancel_keeps_written_batches(self, store, recorder, tmp_path, make_flac):
        root = tmp_path / "many"
        populate(root, 10, make_flac)
        cancel_event = threading.Event()

        def stop_after_four(event):
            if getattr(event, "current", 0) == 4:
                cancel_event.set()

        recorder_notify = recorder.notify

        class Canceller:
            def notify(self, event):
                recorder_notify(event)
                stop_after_four(event)

        pipeline = make_pipeline(store, Canceller(), batch_size=2)
        report = pipeline.rebuild([str(root)], cancel_event=cancel_event)

        assert report.cancelled
        assert report.state is PipelineState.CANCELLED
        assert pipeline.state is PipelineState.CANCELLED
        assert [e.current for e in recorder.progress] == [1, 2, 3, 4]
        assert recorder.events[-1] == DoneEvent(total=10, inserted=4, cancelled=True)
        assert store.count() == 4

    def test_cancel_without_run(self, store):
        assert make_pipeline(store).cancel() is False

    def test_concurrent_run_rejected(self, store, tmp_path, make_flac):
        root = tmp_path / "lib"
        populate(root, 3, make_flac)
        pipeline = make_pipeline(store)
        errors = []

        class Reenter:
            def notify(self, event):
                if getattr(event, "current", 0) == 1:
                    try:
                        pipeline.rebuild([str(root)])
                    except RebuildInProgressError as e:
                        errors.append(e)

        pipeline.notifier = Reenter()
        report = pipeline.rebuild([str(root)])

        assert len(errors) == 1
        assert len(report.tracks) == 3
        assert not pipeline.running

    def test_store_failure_is_fatal(self, store, recorder, library, monkeypatch):
        def broken_truncate():
            raise StoreUnavailableError("tracks.db", "disk I/O error")

        monkeypatch.setattr(store, "truncate", broken_truncate)
        pipeline = make_pipeline(store, recorder)

        with pytest.raises(StoreUnavailableError):
            pipeline.rebuild([str(library)])

        assert pipeline.state is PipelineState.ERRORED
        assert recorder.progress == []
        assert len(recorder.errors) == 1


class TestStateAndProgress:
    def test_initial_state(self, store):
        pipeline = make_pipeline(store)
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.progress == (0, 0)
        assert not pipeline.running

    def test_progress_after_run(self, store, library):
        pipeline = make_pipeline(store)
        pipeline.rebuild([str(library)])
        assert pipeline.progress == (2, 2)
        assert pipeline.state is PipelineState.DONE
