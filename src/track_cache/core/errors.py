"""Exceptions raised by the track cache.

Fatal conditions (invalid root path, unavailable store) propagate out of a
rebuild. Recoverable conditions are collected on the ingest report and logged.
"""

from typing import Optional


class TrackCacheError(Exception):
    """Base exception for track cache operations."""

    pass


class PathInvalidError(TrackCacheError):
    """Raised when a library root does not exist or is not a directory."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message or f"Not a readable directory: {path}")


class EntryUnreadableError(TrackCacheError):
    """A single filesystem entry could not be read during traversal."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Unreadable entry {path}: {reason}" if reason else f"Unreadable entry {path}")


class MetadataUnparseableError(TrackCacheError):
    """Tag/container data of a file could not be parsed."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not parse metadata of {path}: {reason}")


class HashingFailedError(TrackCacheError):
    """File bytes could not be read or fingerprinted; the file is dropped."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not fingerprint {path}: {reason}")


class StoreUnavailableError(TrackCacheError):
    """Raised when the cache database cannot be opened, read or written."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Track store unavailable ({path}): {reason}")


class BatchPersistFailedError(TrackCacheError):
    """One insert chunk failed; records [start, end) were not persisted."""

    def __init__(self, start: int, end: int, reason: str = ""):
        self.start = start
        self.end = end
        self.reason = reason
        super().__init__(f"Failed to persist records {start}-{end}: {reason}")


class RebuildInProgressError(TrackCacheError):
    """Raised when an ingest is requested while another one is running."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "A library rebuild is already in progress")
