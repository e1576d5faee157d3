"""Serving side of a node: answers pings, size queries and chunk requests."""

from __future__ import annotations

import socket
import sys
import threading
import time
from typing import Optional

from torrentlite import config, utils
from torrentlite.config import RequestMode, UDPSegment
from torrentlite.messages import (
    ChunkSharing,
    Node2Node,
    Node2Tracker,
    decode_properties,
)
from torrentlite.storage import node_files_dir, split_file_to_chunks

Address = tuple[str, int]

_POLL_INTERVAL = 0.5
_TEMP_SOCKET_ATTEMPTS = 5
PING = b"PING"
PONG = b"PONG"


def send_segment(sock: socket.socket, data: bytes, addr: Address) -> int:
    """Send ``data`` from ``sock`` to ``addr`` and return the bytes sent.

    Raises ``ValueError`` for a closed socket, empty data or a payload larger
    than a UDP segment, and ``OSError`` if sending fails.
    """
    if sock.fileno() < 0:
        raise ValueError("Invalid socket in send_segment")
    payload = bytes(data)
    if not payload:
        raise ValueError("Empty data in send_segment")
    src_port = sock.getsockname()[1]
    ip, port = addr
    segment = UDPSegment(src_port, int(port), payload)
    return sock.sendto(segment.data, (str(ip), int(port)))


def _open_temp_socket() -> socket.socket:
    last_error: Optional[OSError] = None
    for _ in range(_TEMP_SOCKET_ATTEMPTS):
        try:
            return utils.set_socket(utils.generate_random_port())
        except OSError as exc:
            last_error = exc
    raise OSError(f"Failed to create temporary socket: {last_error}")


class Seeder:
    """Answers requests from other nodes for the files of one node."""

    def __init__(
        self,
        node_id: int,
        sock: socket.socket,
        tracker_addr: Address = (config.TRACKER_IP, config.TRACKER_PORT),
    ) -> None:
        self.node_id = node_id
        self.sock = sock
        self.tracker_addr = (str(tracker_addr[0]), int(tracker_addr[1]))

    def _log(self, content: str) -> None:
        utils.log(self.node_id, content)

    def handle_ping(self, addr: Address) -> None:
        """Reply to a latency probe from ``addr`` with ``PONG``."""
        ip, port = addr
        print(f"Received PING {ip}:{port}")
        send_segment(self.sock, PONG, addr)
        print(f"Sending PONG {ip}:{port}")

    def send_file_size(self, request: Node2Node, addr: Address) -> int:
        """Send the size of the requested file to ``addr`` and return it.

        Raises ``FileNotFoundError`` if the node has no such regular file.
        """
        filename = request.filename
        path = node_files_dir(self.node_id) / filename
        if not path.exists():
            self._log(f"File not found: {filename}")
            raise FileNotFoundError(f"File not found: {filename}")
        if not path.is_file():
            self._log(f"Path is not a regular file: {filename}")
            raise FileNotFoundError(f"Path is not a regular file: {filename}")

        size = path.stat().st_size
        answer = Node2Node(self.node_id, request.src_node_id, filename, size)
        send_segment(self.sock, answer.encode(), addr)
        return size

    def send_chunk(
        self,
        filename: str,
        rng: tuple[int, int],
        dest_node_id: int,
        dest_addr: Address,
    ) -> int:
        """Send bytes ``rng`` of a file to ``dest_addr`` piece by piece.

        The pieces are followed by an end marker (``idx == -1``) and the
        tracker is told about the upload. Returns the number of bytes sent.
        """
        start, end = rng
        if start < 0 or end < 0 or start > end:
            self._log(f"Error: Invalid range specified for file {filename}")
            raise ValueError(f"Invalid range specified for file {filename}")

        started = time.monotonic()
        path = node_files_dir(self.node_id) / filename
        if not path.is_file():
            self._log(f"Error: File not found or inaccessible: {filename}")
            raise FileNotFoundError(f"File not found or inaccessible: {filename}")

        file_size = path.stat().st_size
        self._log(f"Starting to send file: {filename} (Size: {file_size} bytes)")

        pieces = split_file_to_chunks(path, (start, end))
        if not pieces:
            self._log(f"Error: Failed to split file into chunks for {filename}")
            raise ValueError(f"Failed to split file into chunks for {filename}")

        temp_sock = _open_temp_socket()
        try:
            total = 0
            for idx, piece in enumerate(pieces):
                message = ChunkSharing(
                    self.node_id, dest_node_id, filename, (start, end), idx, piece
                )
                send_segment(temp_sock, message.encode(), dest_addr)
                total += len(piece)

            marker = ChunkSharing(self.node_id, dest_node_id, filename, (start, end), -1)
            send_segment(temp_sock, marker.encode(), dest_addr)

            elapsed_ms = int((time.monotonic() - started) * 1000)
            self._log(
                f"Finished sending chunks for file: {filename} to Node {dest_node_id}"
            )
            self._log(f"Total bytes sent: {total} in {elapsed_ms} ms")
            self._log(
                f"Average speed: {(total * 1000) // (max(elapsed_ms, 1) * 1024)} KB/s"
            )

            update = Node2Tracker(self.node_id, RequestMode.UPDATE, filename)
            try:
                send_segment(temp_sock, update.encode(), self.tracker_addr)
            except OSError:
                self._log(f"Error: Failed to notify tracker about file {filename}")
            return total
        finally:
            utils.free_socket(temp_sock)

    def handle_request(self, data: bytes, addr: Address) -> None:
        """Act on one datagram received from ``addr``."""
        data = bytes(data)
        if data == PING:
            self.handle_ping(addr)
            return

        properties = decode_properties(data)
        if "filename" not in properties:
            raise ValueError("Request has no filename")

        if "size" in properties:
            request = Node2Node.decode(data)
            if request.size == -1:
                self._log(f"Received a request for size of {request.filename}")
                self.send_file_size(request, addr)
        elif "range_start" in properties:
            request = ChunkSharing.decode(data)
            if not request.chunk:
                self.send_chunk(
                    request.filename, request.range, request.src_node_id, addr
                )

    def serve_forever(self, stop: threading.Event) -> None:
        """Receive and answer requests on the node's socket until ``stop`` is set."""
        self.sock.settimeout(_POLL_INTERVAL)
        while not stop.is_set():
            try:
                data, addr = self.sock.recvfrom(config.BUFFER_SIZE)
            except (TimeoutError, socket.timeout):
                continue
            except OSError:
                if stop.is_set() or self.sock.fileno() < 0:
                    return
                continue
            if not data:
                continue
            try:
                self.handle_request(data, addr)
            except (OSError, ValueError, EOFError) as exc:
                print(f"Error handling request: {exc}", file=sys.stderr)
                self._log(f"Error handling request: {exc}")