"""
Request/response surface of the track cache.

These are the operations a UI (or the IPC server) calls: rebuild the cache
from a set of directories, add directories incrementally, and read cached
tracks without touching the filesystem.
"""

from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from .context import AppContext
from .domain.library.ingest import IngestReport
from .domain.library.models import Track


class TrackService:
    """Cache operations bound to one application context."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.last_report: Optional[IngestReport] = None

    def _resolve_paths(self, paths: Optional[Iterable[str]]) -> List[str]:
        # None means "the configured roots"; an explicit empty list walks nothing
        if paths is None:
            return list(self.ctx.config.library.library_paths)
        return list(paths)

    def rebuild_cache(self, paths: Optional[Iterable[str]] = None) -> List[Track]:
        """Truncate and rebuild the cache from ``paths`` (default: configured roots).

        Returns:
            Every extracted track. Persisted records may be fewer if a batch
            failed; use get_list_cached() for what is actually stored.
        """
        report = self.ctx.pipeline.rebuild(self._resolve_paths(paths))
        self.last_report = report
        return report.tracks

    def add_to_cache(self, paths: Optional[Iterable[str]] = None) -> List[Track]:
        """Ingest ``paths`` without truncating.

        Returns:
            Tracks whose content was not cached before this call
        """
        report = self.ctx.pipeline.add(self._resolve_paths(paths))
        self.last_report = report
        return report.new_tracks

    def get_list_cached(self) -> List[Track]:
        """List cached tracks straight from the store."""
        tracks = self.ctx.store.find_all()
        logger.debug(f"Read {len(tracks)} tracks from cache")
        return tracks

    def get_by_uid(self, uid: str) -> Optional[Track]:
        """Get one cached track; None when the uid is unknown."""
        track = self.ctx.store.find_by_uid(uid)
        if track is None:
            logger.debug(f"No cached track for uid {uid}")
        return track

    def cancel(self) -> bool:
        """Ask a running rebuild to stop after the current file."""
        return self.ctx.pipeline.cancel()

    def status(self) -> Dict[str, Any]:
        """Current pipeline state, progress and cache size."""
        current, total = self.ctx.pipeline.progress
        return {
            "state": self.ctx.pipeline.state.value,
            "current": current,
            "total": total,
            "cached": self.ctx.store.count(),
        }
