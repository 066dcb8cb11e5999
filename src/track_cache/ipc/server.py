"""IPC server exposing the track cache over a Unix socket.

Protocol: one JSON object per line. A request ``{"command": ..., "args": [...]}``
gets one response ``{"success": bool, "result" | "message": ...}`` and the
connection is closed, except for ``subscribe``, which keeps the connection open
and streams pipeline events (``{"type": "progress" | "done" | "error", ...}``).
"""

import json
import select
import socket
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from ..core.errors import TrackCacheError
from ..notifications import Event
from ..service import TrackService
from .client import get_socket_path

# Blocking sends to a subscriber that stops reading give up after this many seconds
SUBSCRIBER_SEND_TIMEOUT = 10.0


class BroadcastNotifier:
    """Pushes events to every subscribed socket; dead subscribers are dropped."""

    def __init__(self) -> None:
        self._subscribers: Set[socket.socket] = set()
        self._lock = threading.Lock()

    def add(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._subscribers.add(client_socket)

    def discard(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._subscribers.discard(client_socket)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def notify(self, event: Event) -> None:
        line = (json.dumps(event.to_dict()) + "\n").encode("utf-8")
        with self._lock:
            subscribers = list(self._subscribers)
        for client_socket in subscribers:
            try:
                client_socket.sendall(line)
            except OSError as e:
                logger.debug(f"Dropping subscriber: {e}")
                self.discard(client_socket)


def _tracks_result(tracks) -> List[Dict[str, Any]]:
    return [track.to_dict() for track in tracks]


def _handle_rebuild(service: TrackService, args: list) -> Any:
    return _tracks_result(service.rebuild_cache([str(a) for a in args]))


def _handle_add(service: TrackService, args: list) -> Any:
    return _tracks_result(service.add_to_cache([str(a) for a in args]))


def _handle_list(service: TrackService, args: list) -> Any:
    return _tracks_result(service.get_list_cached())


def _handle_get_by_uid(service: TrackService, args: list) -> Any:
    if not args:
        raise ValueError("getByUid requires a uid")
    track = service.get_by_uid(str(args[0]))
    return track.to_dict() if track else None


def _handle_cancel(service: TrackService, args: list) -> Any:
    return service.cancel()


def _handle_status(service: TrackService, args: list) -> Any:
    return service.status()


COMMANDS: Dict[str, Callable[[TrackService, list], Any]] = {
    "rebuildCache": _handle_rebuild,
    "addToCache": _handle_add,
    "getListCached": _handle_list,
    "getByUid": _handle_get_by_uid,
    "cancel": _handle_cancel,
    "status": _handle_status,
}


def process_ipc_command(service: TrackService, command: str, args: list) -> Tuple[bool, Any]:
    """
    Run one IPC command against the service.

    Args:
        service: Track service
        command: Command name
        args: Command arguments

    Returns:
        (success, result_or_message) tuple
    """
    handler = COMMANDS.get(command)
    if handler is None:
        return False, f"Unknown command: {command}"

    try:
        return True, handler(service, args)
    except (TrackCacheError, ValueError) as e:
        logger.warning(f"IPC command {command} failed: {e}")
        return False, str(e)
    except Exception as e:
        logger.exception(f"IPC command {command} crashed")
        return False, f"Error processing command: {e}"


class IPCServer:
    """Unix socket server for IPC commands.

    Runs its accept loop in a background thread and handles each client on its
    own thread, so subscribers can stream events while a rebuild request is
    being served.
    """

    def __init__(self, service: TrackService, socket_path: Optional[Path] = None):
        """
        Initialize IPC server.

        Args:
            service: Track service the commands are dispatched to
            socket_path: Control socket path (default: from config / XDG_RUNTIME_DIR)
        """
        self.service = service
        self.socket_path = socket_path or get_socket_path(service.ctx.config.ipc)
        self.broadcaster = BroadcastNotifier()
        self.server_socket: Optional[socket.socket] = None
        self.running = False
        self.thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    def start(self) -> None:
        """Start the IPC server in a background thread."""
        if self.running:
            return

        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        # Remove stale socket if it exists
        if self.socket_path.exists():
            try:
                self.socket_path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove stale socket {self.socket_path}: {e}")

        self.service.ctx.notifier.add(self.broadcaster)
        self.running = True
        self._ready.clear()
        self.thread = threading.Thread(target=self._run_server, daemon=True)
        self.thread.start()
        self._ready.wait(timeout=5.0)

    def stop(self) -> None:
        """Stop the IPC server and cleanup."""
        self.running = False
        self.service.ctx.notifier.remove(self.broadcaster)

        # Close server socket to unblock accept()
        if self.server_socket:
            try:
                self.server_socket.close()
            except OSError:
                pass

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=2.0)

        if self.socket_path.exists():
            try:
                self.socket_path.unlink()
            except OSError:
                pass

    def serve_forever(self) -> None:
        """Start and block until interrupted."""
        self.start()
        logger.info(f"IPC server listening on {self.socket_path}")
        try:
            while self.running and self.thread and self.thread.is_alive():
                self.thread.join(timeout=1.0)
        except KeyboardInterrupt:
            logger.info("IPC server interrupted")
        finally:
            self.stop()

    def _run_server(self) -> None:
        """Run the Unix socket server loop."""
        try:
            self.server_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self.server_socket.bind(str(self.socket_path))
            self.server_socket.listen(5)
            self.server_socket.settimeout(1.0)  # Poll every second
            self._ready.set()

            while self.running:
                try:
                    client_socket, _ = self.server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self.running:  # Only log if we're still supposed to be running
                        logger.error(f"Error accepting connection: {e}")
                    continue

                handler = threading.Thread(
                    target=self._handle_client, args=(client_socket,), daemon=True
                )
                handler.silent_logging = True
                handler.start()

        except OSError:
            logger.exception("IPC server error")
        finally:
            self._ready.set()
            if self.server_socket:
                self.server_socket.close()

    def _send(self, client_socket: socket.socket, response: Dict[str, Any]) -> None:
        client_socket.sendall((json.dumps(response) + "\n").encode("utf-8"))

    def _handle_client(self, client_socket: socket.socket) -> None:
        """
        Handle a client connection.

        Args:
            client_socket: Connected client socket
        """
        keep_open = False
        try:
            data = b""
            while b"\n" not in data:
                chunk = client_socket.recv(4096)
                if not chunk:
                    break
                data += chunk

            if not data:
                return

            payload = json.loads(data.decode("utf-8").strip())
            command = payload.get("command", "")
            args = payload.get("args", [])

            if command == "subscribe":
                self._send(client_socket, {"success": True, "result": "subscribed"})
                client_socket.settimeout(SUBSCRIBER_SEND_TIMEOUT)
                self.broadcaster.add(client_socket)
                keep_open = True
                self._hold_subscriber(client_socket)
                return

            success, result = process_ipc_command(self.service, command, args)
            if success:
                self._send(client_socket, {"success": True, "result": result})
            else:
                self._send(client_socket, {"success": False, "message": result})

        except json.JSONDecodeError as e:
            self._try_send(client_socket, {"success": False, "message": f"Invalid JSON: {e}"})
        except OSError as e:
            logger.debug(f"Client connection error: {e}")
        finally:
            if keep_open:
                self.broadcaster.discard(client_socket)
            client_socket.close()

    def _try_send(self, client_socket: socket.socket, response: Dict[str, Any]) -> None:
        try:
            self._send(client_socket, response)
        except OSError:
            pass

    def _hold_subscriber(self, client_socket: socket.socket) -> None:
        """Keep a subscriber connection open until the peer or the server closes.

        Polls with select so the socket timeout stays reserved for
        BroadcastNotifier sends.
        """
        while self.running:
            readable, _, _ = select.select([client_socket], [], [], 1.0)
            if readable and not client_socket.recv(1024):
                return
