"""Shared fixtures: temporary stores, audio files built from raw bytes, event recorders."""

import struct
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from track_cache.core.config import Config
from track_cache.core.database import TrackStore
from track_cache.notifications import DoneEvent, ErrorEvent, ProgressEvent


def _vorbis_comment_block(tags: Dict[str, str]) -> bytes:
    vendor = b"track-cache tests"
    body = struct.pack("<I", len(vendor)) + vendor
    body += struct.pack("<I", len(tags))
    for key, value in tags.items():
        entry = f"{key}={value}".encode("utf-8")
        body += struct.pack("<I", len(entry)) + entry
    return body


def build_flac(tags: Optional[Dict[str, str]] = None, total_samples: int = 44100) -> bytes:
    """Build a minimal FLAC file: STREAMINFO plus a VORBIS_COMMENT block, no audio frames.

    44.1 kHz, 2 channels, 16 bits per sample; ``total_samples`` sets the duration.
    """
    streaminfo = struct.pack(">HH", 4096, 4096)
    streaminfo += b"\x00\x00\x00" + b"\x00\x00\x00"  # min/max frame size unknown
    packed = (44100 << 44) | ((2 - 1) << 41) | ((16 - 1) << 36) | total_samples
    streaminfo += struct.pack(">Q", packed)
    streaminfo += b"\x00" * 16  # md5 of decoded audio

    comments = _vorbis_comment_block(tags or {})

    data = b"fLaC"
    data += bytes([0x00]) + len(streaminfo).to_bytes(3, "big") + streaminfo
    data += bytes([0x80 | 4]) + len(comments).to_bytes(3, "big") + comments
    return data


def build_mp3_frames(count: int = 20) -> bytes:
    """MPEG-1 Layer III frames (128 kbps, 44.1 kHz) with silent payloads."""
    header = b"\xff\xfb\x90\x64"
    frame_length = 417
    return (header + b"\x00" * (frame_length - len(header))) * count


class RecordingNotifier:
    """Collects every event it receives."""

    def __init__(self):
        self.events: List = []

    def notify(self, event) -> None:
        self.events.append(event)

    @property
    def progress(self) -> List[ProgressEvent]:
        return [e for e in self.events if isinstance(e, ProgressEvent)]

    @property
    def done(self) -> List[DoneEvent]:
        return [e for e in self.events if isinstance(e, DoneEvent)]

    @property
    def errors(self) -> List[ErrorEvent]:
        return [e for e in self.events if isinstance(e, ErrorEvent)]


@pytest.fixture
def store(tmp_path: Path) -> TrackStore:
    """An initialized, empty track store in a temporary directory."""
    return TrackStore(tmp_path / "cache" / "tracks.db").init()


@pytest.fixture
def recorder() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Default configuration pointed at temporary paths."""
    config = Config()
    config.cache.database_path = str(tmp_path / "cache" / "tracks.db")
    config.library.library_paths = [str(tmp_path / "library")]
    config.ipc.socket_path = str(tmp_path / "control.sock")
    return config


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """A library with one FLAC, one text file and one corrupt MP3.

    library/
        a.flac     tagged FLAC
        b.txt      not audio
        c.mp3      unparseable bytes
    """
    root = tmp_path / "library"
    root.mkdir()
    (root / "a.flac").write_bytes(
        build_flac({"TITLE": "Song A", "ARTIST": "Artist A", "ALBUM": "Album A", "DATE": "2001-05-01"})
    )
    (root / "b.txt").write_text("liner notes")
    (root / "c.mp3").write_bytes(b"this is not an mpeg stream at all")
    return root


@pytest.fixture
def make_flac():
    return build_flac


@pytest.fixture
def make_mp3():
    return build_mp3_frames
