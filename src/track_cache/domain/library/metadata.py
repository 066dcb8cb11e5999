"""
Audio metadata extraction and track display utilities.

Reads a file once into memory, parses its tags with Mutagen from that buffer,
and fingerprints the same bytes, so the record always describes the content
that was hashed.
"""

import base64
import io
import os
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from loguru import logger
from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.flac import Picture

from ...core.errors import HashingFailedError, MetadataUnparseableError
from .hashing import fingerprint
from .models import Track, uid_for_fingerprint
from .walker import extension_of

MULTI_VALUE_SEPARATOR = "; "

# ID3 (MP3), MP4 and Vorbis comment (FLAC/Ogg/Opus) names for each field
TITLE_TAGS = ["TIT2", "\xa9nam", "TITLE"]
ARTIST_TAGS = ["TPE1", "\xa9ART", "ARTIST"]
ARTISTS_TAGS = ["TXXX:ARTISTS", "----:com.apple.iTunes:ARTISTS", "ARTISTS"]
ALBUM_ARTIST_TAGS = ["TPE2", "aART", "ALBUMARTIST", "ALBUM ARTIST"]
ALBUM_TAGS = ["TALB", "\xa9alb", "ALBUM"]
GENRE_TAGS = ["TCON", "\xa9gen", "GENRE"]
COMPOSER_TAGS = ["TCOM", "\xa9wrt", "COMPOSER"]
COMMENT_TAGS = ["\xa9cmt", "COMMENT", "DESCRIPTION"]
YEAR_TAGS = ["TDRC", "TYER", "\xa9day", "DATE", "YEAR"]
ORIGINAL_YEAR_TAGS = [
    "TDOR",
    "TORY",
    "TXXX:originalyear",
    "TXXX:ORIGINALYEAR",
    "----:com.apple.iTunes:ORIGINALDATE",
    "----:com.apple.iTunes:ORIGINALYEAR",
    "ORIGINALDATE",
    "ORIGINALYEAR",
]

_YEAR_PATTERN = re.compile(r"^\s*(\d{4})")


@dataclass
class ExtractionResult:
    """A track record plus the parse condition recorded while building it."""

    track: Track
    parse_error: Optional[MetadataUnparseableError] = None


def _get(audio_file: Any, tag_name: str) -> Any:
    """Look up a raw tag, returning None for absent or invalid keys."""
    try:
        return audio_file.get(tag_name)
    except (KeyError, ValueError):
        # Some formats (like Vorbis) raise ValueError for non-existent keys
        return None


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").strip()
    return str(value).strip()


def get_tag_values(audio_file: Any, tag_names: List[str]) -> List[str]:
    """Get all values of the first present tag, trying multiple possible tag names."""
    for tag_name in tag_names:
        value = _get(audio_file, tag_name)
        if not value:
            continue
        # ID3 frames keep their values on .text
        values = getattr(value, "text", value)
        if not isinstance(values, list):
            values = [values]
        texts = [t for t in (_as_text(v) for v in values) if t]
        if texts:
            return texts
    return []


def get_tag_value(audio_file: Any, tag_names: List[str]) -> Optional[str]:
    """Get the first value of a tag, trying multiple possible tag names."""
    values = get_tag_values(audio_file, tag_names)
    return values[0] if values else None


def join_values(values: List[str]) -> Optional[str]:
    """Flatten a multi-valued tag into one string; None when there are no values."""
    return MULTI_VALUE_SEPARATOR.join(values) if values else None


def get_comments(audio_file: Any) -> List[str]:
    """Read comments; ID3 stores them in COMM frames keyed by description/language."""
    tags = getattr(audio_file, "tags", None)
    if tags is not None and hasattr(tags, "getall"):
        comments = []
        for frame in tags.getall("COMM"):
            comments.extend(t for t in (_as_text(v) for v in frame.text) if t)
        return comments
    return get_tag_values(audio_file, COMMENT_TAGS)


def parse_year(value: Optional[str]) -> Optional[int]:
    """Parse the leading four-digit year from a date-like tag value."""
    if not value:
        return None
    match = _YEAR_PATTERN.match(str(value))
    return int(match.group(1)) if match else None


def extract_artwork(audio_file: Any) -> Optional[bytes]:
    """Return the raw bytes of the first embedded picture, or None."""
    # FLAC picture blocks
    pictures = getattr(audio_file, "pictures", None)
    if pictures:
        return bytes(pictures[0].data)

    tags = getattr(audio_file, "tags", None)
    if tags is None:
        return None

    # ID3 APIC frames
    if hasattr(tags, "getall"):
        frames = tags.getall("APIC")
        return bytes(frames[0].data) if frames else None

    # MP4 cover atoms
    covers = _get(audio_file, "covr")
    if covers:
        return bytes(covers[0])

    # Ogg Vorbis/Opus base64-encoded FLAC picture blocks
    blocks = _get(audio_file, "METADATA_BLOCK_PICTURE")
    if blocks:
        try:
            return bytes(Picture(base64.b64decode(blocks[0])).data)
        except (ValueError, struct.error, MutagenError) as e:
            logger.debug(f"Ignoring malformed picture block: {e}")
    return None


def encode_artwork(data: Optional[bytes]) -> str:
    """Encode artwork bytes as base64 text ("" when there is no artwork)."""
    return base64.b64encode(data).decode("ascii") if data else ""


def parse_metadata(data: bytes, local_path: str) -> dict[str, Any]:
    """Parse tag/container metadata from an in-memory file buffer.

    Args:
        data: Complete file contents
        local_path: Original path; its name helps Mutagen pick the container type

    Returns:
        Dict of Track field values found in the file

    Raises:
        MetadataUnparseableError: If no container matches or parsing fails
    """
    buffer = io.BytesIO(data)
    buffer.name = local_path

    try:
        audio_file = MutagenFile(buffer)
    except MutagenError as e:
        raise MetadataUnparseableError(local_path, str(e)) from e
    except Exception as e:
        # Truncated containers can fail outside Mutagen's own error types
        raise MetadataUnparseableError(local_path, f"{type(e).__name__}: {e}") from e

    if audio_file is None:
        raise MetadataUnparseableError(local_path, "unrecognized audio container")

    artist_values = get_tag_values(audio_file, ARTIST_TAGS)
    artists_values = get_tag_values(audio_file, ARTISTS_TAGS) or artist_values

    duration = None
    bitrate = None
    sample_rate = None
    info = getattr(audio_file, "info", None)
    if info is not None:
        duration = getattr(info, "length", None)
        bitrate = getattr(info, "bitrate", None) or None
        sample_rate = getattr(info, "sample_rate", None) or None

    return {
        "title": get_tag_value(audio_file, TITLE_TAGS),
        "artist": artist_values[0] if artist_values else None,
        "artists": join_values(artists_values),
        "album_artist": join_values(get_tag_values(audio_file, ALBUM_ARTIST_TAGS)),
        "album": get_tag_value(audio_file, ALBUM_TAGS),
        "genre": join_values(get_tag_values(audio_file, GENRE_TAGS)),
        "composer": join_values(get_tag_values(audio_file, COMPOSER_TAGS)),
        "comment": join_values(get_comments(audio_file)),
        "year": parse_year(get_tag_value(audio_file, YEAR_TAGS)),
        "original_year": parse_year(get_tag_value(audio_file, ORIGINAL_YEAR_TAGS)),
        "duration": float(duration) if duration is not None else None,
        "bitrate": int(bitrate) if bitrate else None,
        "sample_rate": int(sample_rate) if sample_rate else None,
        "artwork": encode_artwork(extract_artwork(audio_file)),
    }


def read_file_bytes(local_path: str) -> bytes:
    """Read a whole file.

    Raises:
        HashingFailedError: If the file cannot be read (vanished, permissions)
    """
    try:
        with open(local_path, "rb") as f:
            return f.read()
    except OSError as e:
        raise HashingFailedError(local_path, e.strerror or str(e)) from e


def file_timestamps(local_path: str) -> dict[str, float]:
    """Capture creation, status-change and modification times.

    Raises:
        HashingFailedError: If the file vanished before it could be stat'ed
    """
    try:
        st = os.stat(local_path)
    except OSError as e:
        raise HashingFailedError(local_path, e.strerror or str(e)) from e

    return {
        "created_at": getattr(st, "st_birthtime", None) or st.st_ctime,
        "updated_at": st.st_ctime,
        "modified_at": st.st_mtime,
    }


def extract_track(local_path: str) -> ExtractionResult:
    """Read one audio file and build its track record.

    Unparseable tags do not drop the file: the record keeps empty metadata and
    the parse error is returned alongside it.

    Raises:
        HashingFailedError: If the file bytes cannot be read or fingerprinted
    """
    local_path = os.path.abspath(local_path)
    data = read_file_bytes(local_path)
    timestamps = file_timestamps(local_path)

    parse_error = None
    try:
        fields = parse_metadata(data, local_path)
    except MetadataUnparseableError as e:
        logger.warning(str(e))
        parse_error = e
        fields = {}

    try:
        digest = fingerprint(data)
    except (TypeError, ValueError) as e:
        raise HashingFailedError(local_path, str(e)) from e

    track = Track(
        fingerprint=digest,
        uid=uid_for_fingerprint(digest),
        path=local_path,
        file_size=len(data),
        format=extension_of(local_path) or None,
        **timestamps,
        **fields,
    )
    return ExtractionResult(track=track, parse_error=parse_error)


def get_display_name(track: Track) -> str:
    """Get a display-friendly name for the track."""
    if track.artist and track.title:
        return f"{track.artist} - {track.title}"
    elif track.title:
        return track.title
    elif track.path:
        return Path(track.path).stem
    else:
        return "<Unknown Track>"


def get_duration_str(track: Track) -> str:
    """Get duration as a formatted string (MM:SS)."""
    if not track.duration:
        return "??:??"

    minutes = int(track.duration // 60)
    seconds = int(track.duration % 60)
    return f"{minutes:02d}:{seconds:02d}"


def format_size(bytes_size: float) -> str:
    """Format file size in bytes to human readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_size < 1024:
            return f"{bytes_size:.1f} {unit}"
        bytes_size /= 1024
    return f"{bytes_size:.1f} TB"
