"""
Directory traversal and audio file filtering.

Walks library roots into a flat, deterministic list of regular files, then
filters that list down to recognized audio extensions.
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Set, Tuple

from loguru import logger

from ...core.errors import EntryUnreadableError, PathInvalidError


@dataclass
class WalkResult:
    """Files found under the walked roots plus entries that had to be skipped."""

    files: List[str] = field(default_factory=list)
    errors: List[EntryUnreadableError] = field(default_factory=list)


def validate_roots(roots: Iterable[str]) -> List[str]:
    """Resolve roots to absolute paths, failing if any is not a directory.

    Raises:
        PathInvalidError: If a root does not exist or is not a directory
    """
    resolved = []
    for root in roots:
        path = os.path.abspath(os.path.expanduser(str(root)))
        if not os.path.isdir(path):
            raise PathInvalidError(path)
        resolved.append(path)
    return resolved


def walk_paths(
    roots: Iterable[str],
    follow_symlinks: bool = True,
    on_error: Optional[Callable[[EntryUnreadableError], None]] = None,
) -> WalkResult:
    """Recursively list all regular files under each root.

    Entries are visited in sorted name order so the output is stable for a
    fixed directory state. Directories already visited (by device/inode) are
    skipped, so symlink cycles terminate.

    Args:
        roots: Library root directories
        follow_symlinks: Descend into symlinked directories
        on_error: Optional callback for each skipped entry

    Returns:
        WalkResult with files in traversal order and per-entry errors

    Raises:
        PathInvalidError: If any root is missing or not a directory (checked
            before any traversal starts)
    """
    result = WalkResult()
    visited: Set[Tuple[int, int]] = set()

    def skip(path: str, reason: str) -> None:
        error = EntryUnreadableError(path, reason)
        logger.warning(str(error))
        result.errors.append(error)
        if on_error:
            on_error(error)

    for root in validate_roots(roots):
        try:
            root_stat = os.stat(root)
        except OSError as e:
            skip(root, e.strerror or str(e))
            continue
        key = (root_stat.st_dev, root_stat.st_ino)
        if key in visited:
            logger.debug(f"Root already walked, skipping: {root}")
            continue
        visited.add(key)
        _walk_dir(root, follow_symlinks, visited, result, skip)

    logger.debug(f"Walk found {len(result.files)} files ({len(result.errors)} skipped)")
    return result


def _walk_dir(
    directory: str,
    follow_symlinks: bool,
    visited: Set[Tuple[int, int]],
    result: WalkResult,
    skip: Callable[[str, str], None],
) -> None:
    """Iterative depth-first walk of one root."""
    stack = [directory]

    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            skip(current, e.strerror or str(e))
            continue

        subdirs = []
        for entry in entries:
            try:
                if entry.is_symlink():
                    if not os.path.exists(entry.path):
                        skip(entry.path, "broken symlink")
                        continue
                    if entry.is_dir(follow_symlinks=True):
                        if not follow_symlinks:
                            continue
                        st = os.stat(entry.path)
                        key = (st.st_dev, st.st_ino)
                        if key in visited:
                            logger.debug(f"Symlink cycle or revisit skipped: {entry.path}")
                            continue
                        visited.add(key)
                        subdirs.append(entry.path)
                    elif entry.is_file(follow_symlinks=True):
                        result.files.append(entry.path)
                elif entry.is_dir(follow_symlinks=False):
                    st = entry.stat(follow_symlinks=False)
                    key = (st.st_dev, st.st_ino)
                    if key in visited:
                        continue
                    visited.add(key)
                    subdirs.append(entry.path)
                elif entry.is_file(follow_symlinks=False):
                    result.files.append(entry.path)
            except OSError as e:
                skip(entry.path, e.strerror or str(e))

        # Reverse so the stack pops subdirectories in sorted order
        stack.extend(reversed(subdirs))


def extension_of(path: str) -> str:
    """Return the lowercased extension without its leading separator."""
    return os.path.splitext(path)[1].lower().lstrip(".")


def is_supported_format(path: str, supported_formats: Iterable[str]) -> bool:
    """Check if file format is supported (case-insensitive, dot optional)."""
    formats = {f.lower().lstrip(".") for f in supported_formats}
    return extension_of(path) in formats


def filter_audio_files(files: Iterable[str], supported_formats: Iterable[str]) -> List[str]:
    """Return the files whose extension is a recognized audio format, in input order."""
    formats = {f.lower().lstrip(".") for f in supported_formats}
    return [f for f in files if extension_of(f) in formats]
