"""
Library ingestion: walk, filter, extract, dedup and persist.

A run moves through IDLE -> WALKING -> FILTERING -> EXTRACTING -> PERSISTING
-> DONE, ending in CANCELLED when stopped cooperatively or ERRORED on a fatal
condition (invalid root, unavailable store). Only one run is in flight per
pipeline; a concurrent request is rejected with RebuildInProgressError.

Records are persisted in batches as soon as a batch fills, so a cancelled run
keeps every batch written before the cancel. Progress events are emitted in
file index order (1..N) even when extraction runs on a worker pool.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union

from loguru import logger

from ...core.config import Config
from ...core.database import TrackStore
from ...core.errors import (
    BatchPersistFailedError,
    EntryUnreadableError,
    HashingFailedError,
    MetadataUnparseableError,
    PathInvalidError,
    RebuildInProgressError,
    StoreUnavailableError,
)
from ...notifications import DoneEvent, ErrorEvent, Notifier, NullNotifier, ProgressEvent, safe_notify
from .metadata import ExtractionResult, extract_track
from .models import Track
from .walker import filter_audio_files, walk_paths


class PipelineState(str, Enum):
    IDLE = "idle"
    WALKING = "walking"
    FILTERING = "filtering"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    DONE = "done"
    CANCELLED = "cancelled"
    ERRORED = "errored"


@dataclass
class IngestReport:
    """Outcome of one ingest run.

    ``tracks`` holds every record extracted (what the caller asked for), not
    what was durably written; re-query the store for the persisted set.
    """

    tracks: List[Track] = field(default_factory=list)
    new_tracks: List[Track] = field(default_factory=list)  # queued for insert
    inserted: int = 0
    skipped: int = 0  # fingerprint already cached or seen earlier in the run
    total_files: int = 0
    walk_errors: List[EntryUnreadableError] = field(default_factory=list)
    parse_errors: List[MetadataUnparseableError] = field(default_factory=list)
    hash_errors: List[HashingFailedError] = field(default_factory=list)
    batch_errors: List[BatchPersistFailedError] = field(default_factory=list)
    cancelled: bool = False
    state: PipelineState = PipelineState.IDLE

    @property
    def fingerprints(self) -> Set[str]:
        return {t.fingerprint for t in self.tracks}


Outcome = Union[ExtractionResult, HashingFailedError]


class IngestionPipeline:
    """Drives walker -> extractor -> store for one set of library roots."""

    def __init__(
        self,
        store: TrackStore,
        notifier: Optional[Notifier] = None,
        config: Optional[Config] = None,
    ):
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.config = config or Config()
        self._run_lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._progress: Tuple[int, int] = (0, 0)
        self._cancel_event: Optional[threading.Event] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def progress(self) -> Tuple[int, int]:
        """(current, total) of the running or last extraction."""
        return self._progress

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self) -> bool:
        """Request cooperative cancellation of the running ingest.

        Returns:
            True if a run was in flight and has been asked to stop
        """
        event = self._cancel_event
        if event is None or not self.running:
            return False
        event.set()
        logger.info("Cancellation requested")
        return True

    def rebuild(
        self, paths: Iterable[str], cancel_event: Optional[threading.Event] = None
    ) -> IngestReport:
        """Truncate the store and ingest everything under ``paths``.

        Raises:
            PathInvalidError: A root is missing or not a directory (nothing is touched)
            StoreUnavailableError: The store cannot be truncated or written
            RebuildInProgressError: Another run is in flight
        """
        return self._run(list(paths), truncate=True, cancel_event=cancel_event)

    def add(
        self, paths: Iterable[str], cancel_event: Optional[threading.Event] = None
    ) -> IngestReport:
        """Ingest ``paths`` without truncating, skipping already-cached content.

        Raises:
            PathInvalidError: A root is missing or not a directory
            StoreUnavailableError: The store cannot be read or written
            RebuildInProgressError: Another run is in flight
        """
        return self._run(list(paths), truncate=False, cancel_event=cancel_event)

    def _set_state(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline state: {self._state.value} -> {state.value}")
        self._state = state

    def _run(
        self, paths: List[str], truncate: bool, cancel_event: Optional[threading.Event]
    ) -> IngestReport:
        if not self._run_lock.acquire(blocking=False):
            raise RebuildInProgressError()

        self._cancel_event = cancel_event or threading.Event()
        try:
            return self._ingest(paths, truncate, self._cancel_event)
        except (PathInvalidError, StoreUnavailableError) as e:
            self._set_state(PipelineState.ERRORED)
            logger.error(f"Ingest aborted: {e}")
            safe_notify(self.notifier, ErrorEvent(message=str(e)))
            raise
        finally:
            self._cancel_event = None
            self._run_lock.release()

    def _ingest(
        self, paths: List[str], truncate: bool, cancel_event: threading.Event
    ) -> IngestReport:
        report = IngestReport()
        mode = "rebuild" if truncate else "incremental add"
        logger.info(f"Starting {mode} of {len(paths)} root(s): {paths}")

        self._set_state(PipelineState.WALKING)
        walk = walk_paths(paths, follow_symlinks=self.config.library.follow_symlinks)
        report.walk_errors = walk.errors

        self._set_state(PipelineState.FILTERING)
        audio_files = filter_audio_files(walk.files, self.config.library.supported_formats)
        total = len(audio_files)
        report.total_files = total
        logger.info(
            f"Found {total} audio files ({len(walk.files) - total} other files ignored)"
        )

        if truncate:
            self.store.truncate()
        # Empty after a truncate, so only the incremental mode skips anything here
        known = self.store.fingerprints()

        self._progress = (0, total)
        batch_size = self.config.cache.batch_size
        batch: List[Track] = []

        if total:
            self._set_state(PipelineState.EXTRACTING)

        processed = 0
        for index, path, outcome in self._extract_all(audio_files, cancel_event):
            processed = index
            if isinstance(outcome, HashingFailedError):
                logger.warning(f"Dropping {path}: {outcome}")
                report.hash_errors.append(outcome)
            else:
                track = outcome.track
                if outcome.parse_error is not None:
                    report.parse_errors.append(outcome.parse_error)
                report.tracks.append(track)

                if track.fingerprint in known:
                    report.skipped += 1
                    logger.debug(f"Already cached: {path}")
                else:
                    known.add(track.fingerprint)
                    report.new_tracks.append(track)
                    batch.append(track)

                if len(batch) >= batch_size:
                    self._flush(batch, report)
                    batch = []

            self._progress = (index, total)
            safe_notify(self.notifier, ProgressEvent(current=index, total=total, path=path))

        report.cancelled = processed < total and cancel_event.is_set()

        if batch:
            self._set_state(PipelineState.PERSISTING)
            self._flush(batch, report)

        final_state = PipelineState.CANCELLED if report.cancelled else PipelineState.DONE
        self._set_state(final_state)
        report.state = final_state

        logger.info(
            f"Ingest {final_state.value}: {len(report.tracks)} tracks, "
            f"{report.inserted} inserted, {report.skipped} skipped, "
            f"{len(report.parse_errors)} unparseable, {len(report.hash_errors)} dropped, "
            f"{len(report.batch_errors)} failed batches"
        )
        safe_notify(
            self.notifier,
            DoneEvent(total=total, inserted=report.inserted, cancelled=report.cancelled),
        )
        return report

    def _flush(self, batch: List[Track], report: IngestReport) -> None:
        """Persist one batch; chunk failures are recorded, not raised."""
        offset = len(report.new_tracks) - len(batch)
        failures = self.store.bulk_insert(batch, chunk_size=self.config.cache.batch_size)
        failed = 0
        for failure in failures:
            failed += failure.end - failure.start
            report.batch_errors.append(
                BatchPersistFailedError(
                    offset + failure.start, offset + failure.end, failure.reason
                )
            )
        report.inserted += len(batch) - failed

    def _extract_one(self, path: str) -> Outcome:
        try:
            return extract_track(path)
        except HashingFailedError as e:
            return e

    def _extract_all(
        self, files: List[str], cancel_event: threading.Event
    ) -> Iterator[Tuple[int, str, Outcome]]:
        """Yield (index, path, outcome) in file order, stopping when cancelled."""
        workers = self.config.ingest.workers

        if workers <= 1:
            for index, path in enumerate(files, 1):
                if cancel_event.is_set():
                    return
                yield index, path, self._extract_one(path)
            return

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="track-extract")
        try:
            futures = [executor.submit(self._extract_one, path) for path in files]
            # Consume in submission order so progress stays 1..N
            for index, (path, future) in enumerate(zip(files, futures), 1):
                if cancel_event.is_set():
                    return
                yield index, path, future.result()
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
