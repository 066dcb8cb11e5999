"""Content fingerprinting for cached tracks."""

import hashlib


def fingerprint(data: bytes) -> str:
    """Return the lowercase md5 hex digest of ``data``."""
    return hashlib.md5(data, usedforsecurity=False).hexdigest()
