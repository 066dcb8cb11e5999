"""Track cache: scan audio directories into a persistent, deduplicated track cache."""

__version__ = "0.1.0"
