"""
Configuration management for the track cache
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

DEFAULT_FORMATS = [
    "mp3",
    "flac",
    "m4a",
    "ogg",
    "opus",
    "wav",
    "aac",
    "aiff",
    "ape",
    "wma",
]


def normalize_formats(formats: List[str]) -> List[str]:
    """Lowercase extensions and strip the leading separator ('.FLAC' -> 'flac')."""
    normalized = []
    for fmt in formats:
        ext = str(fmt).strip().lower().lstrip(".")
        if ext and ext not in normalized:
            normalized.append(ext)
    return normalized


@dataclass
class LibraryConfig:
    """Configuration for the scanned library roots."""

    library_paths: List[str] = field(
        default_factory=lambda: [str(Path.home() / "Music")]
    )
    supported_formats: List[str] = field(default_factory=lambda: list(DEFAULT_FORMATS))
    follow_symlinks: bool = True


@dataclass
class CacheConfig:
    """Configuration for the persistent track store."""

    database_path: Optional[str] = None  # default: <data dir>/tracks.db
    batch_size: int = 200

    def validate(self) -> None:
        """Validate cache configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")


@dataclass
class IngestConfig:
    """Configuration for metadata extraction."""

    workers: int = 1  # 1 = sequential extraction

    def validate(self) -> None:
        """Validate ingest configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/track-cache/track-cache.log)
    )
    max_file_size_mb: int = 10  # Maximum log file size before rotation
    backup_count: int = 5  # Number of backup files to keep
    console_output: bool = False  # Also output to console (for debugging)


@dataclass
class IPCConfig:
    """Configuration for IPC (Inter-Process Communication)."""

    enabled: bool = True
    socket_path: Optional[str] = None  # default: $XDG_RUNTIME_DIR/track-cache/control.sock


@dataclass
class NotificationsConfig:
    """Configuration for desktop notifications."""

    enabled: bool = False
    show_success: bool = True
    show_errors: bool = True


@dataclass
class Config:
    """Main configuration object."""

    library: LibraryConfig = field(default_factory=LibraryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ipc: IPCConfig = field(default_factory=IPCConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "track-cache"
    return Path.home() / ".config" / "track-cache"


def _find_project_config() -> Optional[Path]:
    """Find config.toml in project root by looking for pyproject.toml.

    Returns:
        Path to config.toml in project root, or None if not found
    """
    current = Path(__file__).resolve().parent
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            config_path = parent / "config.toml"
            if config_path.exists():
                return config_path
            # Found project root but no config.toml there
            return None
    return None


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Project root (detected via pyproject.toml) - for development
    2. Current working directory
    3. XDG_CONFIG_HOME/track-cache (or ~/.config/track-cache)
    """
    project_config = _find_project_config()
    if project_config:
        return project_config

    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "track-cache"
    return Path.home() / ".local" / "share" / "track-cache"


def get_database_path(config: Optional[Config] = None) -> Path:
    """Get the path to the SQLite cache, honoring the configured override."""
    if config is not None and config.cache.database_path:
        return Path(config.cache.database_path).expanduser()
    return get_data_dir() / "tracks.db"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Track Cache Configuration

[library]
# Directories to scan for audio files
library_paths = ["~/Music"]

# Recognized audio extensions (case-insensitive, leading dot optional)
supported_formats = ["mp3", "flac", "m4a", "ogg", "opus", "wav", "aac", "aiff", "ape", "wma"]

# Descend into symlinked directories (cycles are detected and skipped)
follow_symlinks = true

[cache]
# SQLite database path (default: ~/.local/share/track-cache/tracks.db)
# database_path = "/path/to/tracks.db"

# Number of records written per insert transaction
batch_size = 200

[ingest]
# Parallel metadata extraction workers (1 = sequential)
workers = 1

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/track-cache/track-cache.log)
# log_file = "/path/to/custom/track-cache.log"

# Maximum log file size in MB before rotation
max_file_size_mb = 10

# Number of backup log files to keep
backup_count = 5

# Also output logs to console (useful for debugging)
console_output = false

[ipc]
# Enable the control socket used by `track-cache serve`
enabled = true

# socket_path = "/run/user/1000/track-cache/control.sock"

[notifications]
# Desktop notifications when a rebuild finishes
enabled = false

# Show success notifications
show_success = true

# Show error notifications
show_errors = true
""".strip()


def _parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML data, keeping defaults for missing keys."""
    config = Config()

    if "library" in toml_data:
        library_data = toml_data["library"]
        config.library = LibraryConfig(
            library_paths=[
                str(Path(p).expanduser())
                for p in library_data.get("library_paths", config.library.library_paths)
            ],
            supported_formats=normalize_formats(
                library_data.get("supported_formats", config.library.supported_formats)
            ),
            follow_symlinks=library_data.get(
                "follow_symlinks", config.library.follow_symlinks
            ),
        )

    if "cache" in toml_data:
        cache_data = toml_data["cache"]
        database_path = cache_data.get("database_path")
        if database_path:
            database_path = str(Path(database_path).expanduser())
        config.cache = CacheConfig(
            database_path=database_path,
            batch_size=cache_data.get("batch_size", config.cache.batch_size),
        )
        try:
            config.cache.validate()
        except ValueError as e:
            logger.warning(f"Invalid cache configuration: {e}. Using defaults.")
            config.cache = CacheConfig(database_path=database_path)

    if "ingest" in toml_data:
        ingest_data = toml_data["ingest"]
        config.ingest = IngestConfig(
            workers=ingest_data.get("workers", config.ingest.workers),
        )
        try:
            config.ingest.validate()
        except ValueError as e:
            logger.warning(f"Invalid ingest configuration: {e}. Using defaults.")
            config.ingest = IngestConfig()

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        log_file = logging_data.get("log_file")
        if log_file:
            log_file = str(Path(log_file).expanduser())
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level).upper(),
            log_file=log_file,
            max_file_size_mb=logging_data.get(
                "max_file_size_mb", config.logging.max_file_size_mb
            ),
            backup_count=logging_data.get("backup_count", config.logging.backup_count),
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    if "ipc" in toml_data:
        ipc_data = toml_data["ipc"]
        socket_path = ipc_data.get("socket_path")
        if socket_path:
            socket_path = str(Path(socket_path).expanduser())
        config.ipc = IPCConfig(
            enabled=ipc_data.get("enabled", config.ipc.enabled),
            socket_path=socket_path,
        )

    if "notifications" in toml_data:
        notifications_data = toml_data["notifications"]
        config.notifications = NotificationsConfig(
            enabled=notifications_data.get("enabled", config.notifications.enabled),
            show_success=notifications_data.get(
                "show_success", config.notifications.show_success
            ),
            show_errors=notifications_data.get(
                "show_errors", config.notifications.show_errors
            ),
        )

    return config


def apply_env_overrides(config: Config) -> Config:
    """Override TOML values with environment variables if present.

    - TRACK_CACHE_DB: database path
    - TRACK_CACHE_LIBRARY_PATHS: os.pathsep-separated library roots
    """
    db_path = os.environ.get("TRACK_CACHE_DB")
    if db_path:
        config.cache.database_path = str(Path(db_path).expanduser())

    library_paths = os.environ.get("TRACK_CACHE_LIBRARY_PATHS")
    if library_paths:
        config.library.library_paths = [
            str(Path(p).expanduser()) for p in library_paths.split(os.pathsep) if p
        ]

    return config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values (see apply_env_overrides).
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        logger.info(f"Created default configuration at: {config_path}")
        return apply_env_overrides(Config())

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
        config = _parse_config(toml_data)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(
            f"Error loading configuration from {config_path}: {e}. Using default configuration."
        )
        config = Config()

    return apply_env_overrides(config)


def save_config(config: Config, config_path: Optional[Path] = None) -> bool:
    """Save configuration to file."""
    config_path = config_path or get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        toml_content = f"""# Track Cache Configuration

[library]
library_paths = {config.library.library_paths!r}
supported_formats = {config.library.supported_formats!r}
follow_symlinks = {str(config.library.follow_symlinks).lower()}

[cache]
batch_size = {config.cache.batch_size}"""

        if config.cache.database_path:
            toml_content += f'\ndatabase_path = "{config.cache.database_path}"'

        toml_content += f"""

[ingest]
workers = {config.ingest.workers}

[logging]
level = "{config.logging.level}"
max_file_size_mb = {config.logging.max_file_size_mb}
backup_count = {config.logging.backup_count}
console_output = {str(config.logging.console_output).lower()}"""

        if config.logging.log_file:
            toml_content += f'\nlog_file = "{config.logging.log_file}"'

        toml_content += f"""

[ipc]
enabled = {str(config.ipc.enabled).lower()}"""

        if config.ipc.socket_path:
            toml_content += f'\nsocket_path = "{config.ipc.socket_path}"'

        toml_content += f"""

[notifications]
enabled = {str(config.notifications.enabled).lower()}
show_success = {str(config.notifications.show_success).lower()}
show_errors = {str(config.notifications.show_errors).lower()}
"""

        with open(config_path, "w", encoding="utf-8") as f:
            f.write(toml_content)

        return True

    except OSError as e:
        logger.error(f"Error saving configuration to {config_path}: {e}")
        return False


def ensure_directories() -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
