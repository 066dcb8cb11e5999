"""IPC (Inter-Process Communication) for the track cache.

Lets a UI process call the cache operations and follow rebuild progress over
a Unix socket.
"""

from .client import get_socket_path, iter_events, send_command

__all__ = ["get_socket_path", "iter_events", "send_command"]
