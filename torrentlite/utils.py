"""Sockets, port allocation, command parsing and logging helpers."""

from __future__ import annotations

import random
import socket
import sys
import threading
import time
from pathlib import Path

from torrentlite import config

used_ports: set[int] = set()
_ports_lock = threading.Lock()

_MAX_PORT_ATTEMPTS = 1000


def _bind(kind: int, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, kind)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
    except (OSError, OverflowError) as exc:
        sock.close()
        raise OSError(f"Could not bind socket to port {port}: {exc}") from exc
    with _ports_lock:
        used_ports.add(port)
    return sock


def set_socket(port: int) -> socket.socket:
    """Create a UDP socket bound to ``port`` on all interfaces."""
    return _bind(socket.SOCK_DGRAM, port)


def set_tcp_socket(port: int) -> socket.socket:
    """Create a TCP socket bound to ``port`` on all interfaces."""
    return _bind(socket.SOCK_STREAM, port)


def free_socket(sock: socket.socket) -> None:
    """Close ``sock`` and release the port it was bound to."""
    if sock.fileno() < 0:
        return
    try:
        port = sock.getsockname()[1]
    except OSError:
        port = None
    with _ports_lock:
        if port is not None:
            used_ports.discard(port)
    sock.close()


def generate_random_port() -> int:
    """Pick a random port in the available range that is not in use."""
    for _ in range(_MAX_PORT_ATTEMPTS):
        port = random.randint(config.AVAILABLE_PORT_MIN, config.AVAILABLE_PORT_MAX)
        with _ports_lock:
            if port not in used_ports:
                return port
    raise RuntimeError(
        f"Could not find an available port after {_MAX_PORT_ATTEMPTS} attempts"
    )


def parse_command(command: str) -> tuple[str, str]:
    """Split a command line into ``(mode, filename)``.

    One word gives an empty filename; any other word count is invalid and
    gives ``("", "")``.
    """
    parts = command.split()
    if len(parts) == 2:
        return parts[0], parts[1]
    if len(parts) == 1:
        return parts[0], ""
    print("Warning: INVALID COMMAND ENTERED. TRY ANOTHER!", file=sys.stderr)
    return "", ""


def create_directory(path: str | Path) -> Path:
    """Create ``path`` if it does not exist yet and return it."""
    directory = Path(path)
    if not directory.exists():
        try:
            directory.mkdir()
        except FileExistsError:
            pass
    return directory


def log(node_id: int, content: str, is_tracker: bool = False) -> None:
    """Print a timestamped line and append it to the node's or tracker's log."""
    try:
        log_dir = create_directory(config.LOGS_DIR)
    except OSError:
        print("Error: Log directory could not be created", file=sys.stderr)
        return

    formatted = ""
    if content != config.HEARTBEAT_LOG_LINE:
        formatted = f"[{time.strftime('%H:%M:%S')}]  {content}\n"
        sys.stdout.write(formatted)

    name = "_tracker.log" if is_tracker else f"node{node_id}.log"
    log_file = log_dir / name
    try:
        with log_file.open("a", encoding="utf-8") as stream:
            stream.write(formatted)
    except OSError:
        print(f"Error: Could not open log file {log_file}", file=sys.stderr)