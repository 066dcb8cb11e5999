"""Progress notifications pushed from the ingestion pipeline to listeners.

Delivery is fire-and-forget: a failing listener is logged and ignored, the
pipeline's return value stays authoritative.
"""

import shutil
import subprocess
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Literal, Protocol, Union

from loguru import logger

from .core.config import NotificationsConfig


@dataclass(frozen=True)
class ProgressEvent:
    """One file finished extracting; ``current`` runs 1..total."""

    current: int
    total: int
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "progress", **asdict(self)}


@dataclass(frozen=True)
class DoneEvent:
    """Terminal event of a finished (or cancelled) ingest."""

    total: int
    inserted: int
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "done", **asdict(self)}


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal event of an ingest aborted by a fatal error."""

    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "error", **asdict(self)}


Event = Union[ProgressEvent, DoneEvent, ErrorEvent]


class Notifier(Protocol):
    """Anything that can receive pipeline events."""

    def notify(self, event: Event) -> None: ...


class NullNotifier:
    """Discards every event."""

    def notify(self, event: Event) -> None:
        pass


class LoggingNotifier:
    """Writes events to the log."""

    def notify(self, event: Event) -> None:
        if isinstance(event, ProgressEvent):
            logger.debug(f"[{event.current}/{event.total}] {event.path}")
        elif isinstance(event, DoneEvent):
            state = "cancelled" if event.cancelled else "done"
            logger.info(f"Ingest {state}: {event.total} tracks, {event.inserted} cached")
        else:
            logger.error(f"Ingest failed: {event.message}")


class CallbackNotifier:
    """Forwards events to a plain callable."""

    def __init__(self, callback: Callable[[Event], None]):
        self.callback = callback

    def notify(self, event: Event) -> None:
        self.callback(event)


class CompositeNotifier:
    """Fans events out to several notifiers; one failing does not stop the others."""

    def __init__(self, *notifiers: Notifier):
        self.notifiers = list(notifiers)

    def add(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    def remove(self, notifier: Notifier) -> None:
        if notifier in self.notifiers:
            self.notifiers.remove(notifier)

    def notify(self, event: Event) -> None:
        for notifier in list(self.notifiers):
            safe_notify(notifier, event)


def safe_notify(notifier: Notifier, event: Event) -> None:
    """Deliver an event, logging and dropping any listener failure."""
    try:
        notifier.notify(event)
    except Exception as e:
        logger.warning(f"Notifier {type(notifier).__name__} failed on {type(event).__name__}: {e}")


def notify(
    title: str, message: str, urgency: Literal["low", "normal", "critical"] = "normal"
) -> None:
    """
    Show a desktop notification using notify-send.

    Args:
        title: Notification title
        message: Notification message body
        urgency: Urgency level ('low', 'normal', 'critical')

    Note:
        Silently skips notification if notify-send is not available.
    """
    if not shutil.which("notify-send"):
        return

    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency",
                urgency,
                "--app-name",
                "Track Cache",
                title,
                message,
            ],
            check=False,  # Don't raise on error
            timeout=2.0,
            capture_output=True,  # Suppress output
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"Desktop notification failed: {e}")


def notify_success(message: str) -> None:
    """Show a success notification with checkmark."""
    notify("✓ Track Cache", message, urgency="normal")


def notify_error(message: str) -> None:
    """Show an error notification with X mark."""
    notify("✗ Track Cache", message, urgency="critical")


class DesktopNotifier:
    """Shows terminal events as desktop notifications, per [notifications] config."""

    def __init__(self, config: NotificationsConfig):
        self.config = config

    def notify(self, event: Event) -> None:
        if not self.config.enabled:
            return
        if isinstance(event, DoneEvent) and self.config.show_success:
            verb = "Rebuild cancelled" if event.cancelled else "Library cached"
            notify_success(f"{verb}: {event.total} tracks")
        elif isinstance(event, ErrorEvent) and self.config.show_errors:
            notify_error(event.message)
