"""
Track cache domain models.

Contains the persisted track record.
"""

import uuid
from typing import Any, Dict, NamedTuple, Optional

# Fixed namespace: uid = uuid5(TRACK_UID_NAMESPACE, fingerprint)
TRACK_UID_NAMESPACE = uuid.UUID("6f1c3a52-9e0b-4d4e-8a57-2b6f3c9d1e74")


def uid_for_fingerprint(fingerprint: str) -> str:
    """Derive the stable track uid from a content fingerprint."""
    return str(uuid.uuid5(TRACK_UID_NAMESPACE, fingerprint))


class Track(NamedTuple):
    """Represents a cached audio file.

    ``fingerprint`` is the durable identity of the file's bytes. ``path`` and
    the timestamps are volatile attributes captured at scan time.
    """

    fingerprint: str  # md5 hex digest of the file bytes
    uid: str  # uuid5 derived from fingerprint
    path: str  # absolute path at time of last scan
    title: Optional[str] = None
    artist: Optional[str] = None
    artists: Optional[str] = None  # multi-valued, "; "-joined
    album_artist: Optional[str] = None  # multi-valued, "; "-joined
    album: Optional[str] = None
    genre: Optional[str] = None  # multi-valued, "; "-joined
    composer: Optional[str] = None
    comment: Optional[str] = None  # multi-valued, "; "-joined
    year: Optional[int] = None
    original_year: Optional[int] = None
    duration: Optional[float] = None  # in seconds
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    artwork: str = ""  # base64 of the first embedded picture, "" if none
    file_size: int = 0
    format: Optional[str] = None  # normalized extension, e.g. "flac"
    created_at: Optional[float] = None  # POSIX seconds (birth time or ctime)
    modified_at: Optional[float] = None  # mtime
    updated_at: Optional[float] = None  # ctime

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable dict of all fields."""
        return self._asdict()

    @classmethod
    def from_row(cls, row: Any) -> "Track":
        """Build a Track from a sqlite3.Row or a dict with column names."""
        data = dict(row)
        return cls(**{name: data[name] for name in cls._fields if name in data})

    @property
    def has_metadata(self) -> bool:
        """True when any descriptive tag was found."""
        return any(
            (self.title, self.artist, self.album, self.album_artist, self.genre)
        )


# Column order used by the store for inserts
TRACK_COLUMNS = Track._fields
