"""Application context for explicit state passing.

This module provides the AppContext dataclass that bundles everything the
ingestion pipeline and the call surface need (configuration, track store,
notifier, pipeline). It is built once at process start and injected, instead
of being reached through module-level globals.
"""

from dataclasses import dataclass, replace
from typing import Optional

from track_cache.core.config import Config, get_database_path
from track_cache.core.database import TrackStore
from track_cache.domain.library.ingest import IngestionPipeline
from track_cache.notifications import (
    CompositeNotifier,
    DesktopNotifier,
    LoggingNotifier,
    Notifier,
)


@dataclass
class AppContext:
    """Application context passed to the service layer and transports.

    Attributes:
        config: Application configuration
        store: Persistent track store
        notifier: Fan-out notifier receiving pipeline events
        pipeline: Ingestion pipeline bound to store and notifier
    """

    config: Config
    store: TrackStore
    notifier: CompositeNotifier
    pipeline: IngestionPipeline

    @classmethod
    def create(
        cls,
        config: Config,
        store: Optional[TrackStore] = None,
        notifier: Optional[Notifier] = None,
    ) -> "AppContext":
        """Create the application context.

        Args:
            config: Application configuration
            store: Track store (default: SQLite at the configured path, initialized)
            notifier: Extra listener to receive pipeline events

        Returns:
            New AppContext with a logging notifier, a desktop notifier and
            ``notifier`` (if given) attached

        Raises:
            StoreUnavailableError: If the default store cannot be opened
        """
        if store is None:
            store = TrackStore(get_database_path(config)).init()

        fanout = CompositeNotifier(LoggingNotifier(), DesktopNotifier(config.notifications))
        if notifier is not None:
            fanout.add(notifier)

        pipeline = IngestionPipeline(store, notifier=fanout, config=config)
        return cls(config=config, store=store, notifier=fanout, pipeline=pipeline)

    def with_config(self, config: Config) -> "AppContext":
        """Return new context with updated configuration.

        The store and notifier are shared; a new pipeline picks up the config.
        """
        pipeline = IngestionPipeline(self.store, notifier=self.notifier, config=config)
        return replace(self, config=config, pipeline=pipeline)
