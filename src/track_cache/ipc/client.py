"""IPC client for talking to a running track cache server."""

import json
import os
import socket
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..core.config import IPCConfig, get_data_dir


def get_socket_path(ipc_config: Optional[IPCConfig] = None) -> Path:
    """
    Get the path to the track cache control socket.

    Returns:
        Path to Unix socket
    """
    if ipc_config is not None and ipc_config.socket_path:
        return Path(ipc_config.socket_path)

    # Use XDG_RUNTIME_DIR if available, otherwise fall back to the data dir
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / "track-cache" / "control.sock"
    return get_data_dir() / "control.sock"


def _read_line(sock: socket.socket, buffer: bytes) -> Tuple[Optional[bytes], bytes]:
    """Read one newline-terminated message; returns (line, rest) or (None, b"") on EOF."""
    while b"\n" not in buffer:
        chunk = sock.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk
    line, _, rest = buffer.partition(b"\n")
    return line, rest


def _connect(socket_path: Path, timeout: Optional[float]) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    sock.connect(str(socket_path))
    return sock


def send_command(
    command: str,
    args: Optional[List[Any]] = None,
    socket_path: Optional[Path] = None,
    timeout: Optional[float] = 5.0,
) -> Tuple[bool, Any]:
    """
    Send a command to the running track cache server.

    Args:
        command: Command name (e.g., 'rebuildCache', 'getListCached', 'getByUid')
        args: Command arguments (optional)
        socket_path: Control socket (default: get_socket_path())
        timeout: Socket timeout in seconds; None waits indefinitely (rebuilds)

    Returns:
        (success, payload) tuple
            success: True if command executed successfully
            payload: Command result, or an error description
    """
    socket_path = socket_path or get_socket_path()

    if not socket_path.exists():
        return False, "Track cache server is not running"

    payload = {"command": command, "args": args or []}

    try:
        sock = _connect(socket_path, timeout)
        try:
            sock.sendall((json.dumps(payload) + "\n").encode("utf-8"))
            line, _ = _read_line(sock, b"")
        finally:
            sock.close()

        if not line:
            return False, "No response from track cache server"

        response = json.loads(line.decode("utf-8"))
        if response.get("success", False):
            return True, response.get("result")
        return False, response.get("message", "No message")

    except socket.timeout:
        return False, "Track cache server not responding (timeout)"
    except (ConnectionRefusedError, FileNotFoundError):
        return False, "Track cache server not running"
    except json.JSONDecodeError as e:
        return False, f"Invalid response from track cache server: {e}"
    except OSError as e:
        return False, f"Failed to send command: {e}"


def iter_events(
    socket_path: Optional[Path] = None, until_done: bool = True
) -> Iterator[Dict[str, Any]]:
    """
    Subscribe to pipeline events and yield them as dicts.

    Args:
        socket_path: Control socket (default: get_socket_path())
        until_done: Stop after the first terminal ('done' or 'error') event

    Raises:
        ConnectionError: If the server refuses the subscription
    """
    socket_path = socket_path or get_socket_path()
    sock = _connect(socket_path, None)
    try:
        sock.sendall((json.dumps({"command": "subscribe", "args": []}) + "\n").encode("utf-8"))
        line, buffer = _read_line(sock, b"")
        if line is None or not json.loads(line.decode("utf-8")).get("success"):
            raise ConnectionError("Subscription refused by track cache server")

        while True:
            line, buffer = _read_line(sock, buffer)
            if line is None:
                return
            event = json.loads(line.decode("utf-8"))
            yield event
            if until_done and event.get("type") in ("done", "error"):
                return
    finally:
        sock.close()
