"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Track store (SQLite)
- Logging (Loguru) and console output (Rich)
- Error types
"""

# Configuration
from .config import (
    Config,
    load_config,
    save_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    get_database_path,
    create_default_config,
    ensure_directories,
)

# Errors
from .errors import (
    TrackCacheError,
    PathInvalidError,
    EntryUnreadableError,
    MetadataUnparseableError,
    HashingFailedError,
    StoreUnavailableError,
    BatchPersistFailedError,
    RebuildInProgressError,
)

__all__ = [
    # Config
    "Config",
    "load_config",
    "save_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "get_database_path",
    "create_default_config",
    "ensure_directories",
    # Errors
    "TrackCacheError",
    "PathInvalidError",
    "EntryUnreadableError",
    "MetadataUnparseableError",
    "HashingFailedError",
    "StoreUnavailableError",
    "BatchPersistFailedError",
    "RebuildInProgressError",
]
