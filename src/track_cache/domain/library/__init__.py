"""Library domain - audio file discovery, metadata and fingerprints.

This domain handles:
- Track data models
- Directory traversal and audio file filtering
- Metadata extraction from audio files
- Content fingerprinting

The ingestion pipeline lives in ``.ingest`` and is imported from there.
"""

# Models
from .models import Track, uid_for_fingerprint

# Fingerprints
from .hashing import fingerprint

# Traversal
from .walker import (
    WalkResult,
    walk_paths,
    filter_audio_files,
    is_supported_format,
)

# Metadata extraction and display
from .metadata import (
    ExtractionResult,
    extract_track,
    parse_metadata,
    get_display_name,
    get_duration_str,
    format_size,
)

__all__ = [
    # Models
    "Track",
    "uid_for_fingerprint",
    # Fingerprints
    "fingerprint",
    # Traversal
    "WalkResult",
    "walk_paths",
    "filter_audio_files",
    "is_supported_format",
    # Metadata
    "ExtractionResult",
    "extract_track",
    "parse_metadata",
    "get_display_name",
    "get_duration_str",
    "format_size",
]
