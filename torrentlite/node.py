"""A peer node: registers with the tracker, downloads files and serves them."""

from __future__ import annotations

import argparse
import socket
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from torrentlite import config, utils
from torrentlite.config import RequestMode
from torrentlite.messages import (
    ChunkSharing,
    FileOwner,
    Node2Node,
    Node2Tracker,
    Tracker2Node,
)
from torrentlite.seeder import PING, Seeder, send_segment
from torrentlite.storage import (
    create_directory_recursive,
    fetch_owned_files,
    node_files_dir,
    reassemble_file,
    sort_chunks,
    split_ranges,
)

Address = tuple[str, int]

_SOCKET_ATTEMPTS = 5
_COMMANDS = "send <filename>, download <filename>, search <filename>, exit"
_BASE_DIRS = (
    (config.LOGS_DIR, "logs"),
    (config.NODE_FILES_DIR, "node_files"),
    (config.TRACKER_DB_DIR, "tracker_db"),
)


def _open_socket() -> socket.socket:
    last_error: Optional[OSError] = None
    for _ in range(_SOCKET_ATTEMPTS):
        try:
            return utils.set_socket(utils.generate_random_port())
        except OSError as exc:
            last_error = exc
    raise OSError(f"Failed to create socket: {last_error}")


@contextmanager
def _temp_socket(timeout: Optional[float]) -> Iterator[socket.socket]:
    sock = _open_socket()
    sock.settimeout(timeout)
    try:
        yield sock
    finally:
        utils.free_socket(sock)


class Node:
    """One peer of the file sharing network."""

    response_timeout: Optional[float] = None
    ack_timeout: float = 2.0
    ping_timeout: float = 5.0
    max_retries: int = 10

    def __init__(
        self,
        node_id: int,
        tracker_addr: Address = (config.TRACKER_IP, config.TRACKER_PORT),
    ) -> None:
        self.node_id = node_id
        self.tracker_addr: Address = (str(tracker_addr[0]), int(tracker_addr[1]))
        self.sock = _open_socket()

        for directory, label in _BASE_DIRS:
            try:
                create_directory_recursive(directory)
            except OSError:
                self._log(f"Warning: Failed to create {label} directory")

        self.files: set[str] = self._fetch_files()
        self.downloaded_files: dict[str, list[ChunkSharing]] = {}
        self._download_lock = threading.Lock()
        self._files_lock = threading.Lock()
        self._stop = threading.Event()
        self._seeder = Seeder(node_id, self.sock, self.tracker_addr)
        self._listener: Optional[threading.Thread] = None
        self._downloads: list[threading.Thread] = []

    @property
    def port(self) -> int:
        """The port of the node's main socket."""
        return self.sock.getsockname()[1]

    def _log(self, content: str) -> None:
        utils.log(self.node_id, content)

    def _fetch_files(self) -> set[str]:
        try:
            return fetch_owned_files(self.node_id)
        except OSError:
            self._log("Warning: Could not create node files directory")
            return set()

    def _send_to_tracker(self, message: Node2Tracker) -> None:
        send_segment(self.sock, message.encode(), self.tracker_addr)

    def close(self) -> None:
        """Stop background work and release the node's socket."""
        self._stop.set()
        utils.free_socket(self.sock)
        if self._listener is not None:
            self._listener.join(timeout=1.0)

    def enter_torrent(self) -> bool:
        """Register with the tracker; return whether it answered in time."""
        self._send_to_tracker(Node2Tracker(self.node_id, RequestMode.REGISTER))
        previous = self.sock.gettimeout()
        self.sock.settimeout(self.ack_timeout)
        try:
            data, _ = self.sock.recvfrom(config.BUFFER_SIZE)
        except OSError:
            data = b""
        finally:
            self.sock.settimeout(previous)

        if not data:
            self._log("ACK not received within timeout. Tracker might be down.")
            return False
        if data == b"ACK":
            self._log("ACK received from Tracker")
        else:
            text = data.decode("utf-8", errors="replace")
            self._log(f"Unexpected message instead of ACK: {text}")
        self._log("Entered Torrent.")
        return True

    def exit_torrent(self) -> None:
        """Tell the tracker that this node leaves."""
        self._send_to_tracker(Node2Tracker(self.node_id, RequestMode.EXIT))
        self._log("You exited the torrent!")

    def send_heartbeat(self) -> None:
        """Tell the tracker that this node is still alive."""
        self._log(config.HEARTBEAT_LOG_LINE)
        self._send_to_tracker(Node2Tracker(self.node_id, RequestMode.HEARTBEAT))

    def inform_tracker_periodically(self, stop: threading.Event) -> None:
        """Send a heartbeat every node interval until ``stop`` is set."""
        while not stop.is_set():
            try:
                self.send_heartbeat()
            except (OSError, ValueError) as exc:
                self._log(f"Error: Failed to send heartbeat: {exc}")
            if stop.wait(config.NODE_TIME_INTERVAL):
                return

    def search_torrent(self, filename: str) -> list[tuple[FileOwner, int]]:
        """Ask the tracker who owns ``filename``."""
        request = Node2Tracker(self.node_id, RequestMode.NEED, filename)
        with _temp_socket(self.response_timeout) as sock:
            send_segment(sock, request.encode(), self.tracker_addr)
            while True:
                data, _ = sock.recvfrom(config.BUFFER_SIZE)
                if not data:
                    continue
                try:
                    return Tracker2Node.decode(data).search_result
                except ValueError:
                    continue

    def search_file_owners(self, filename: str) -> list[tuple[FileOwner, int]]:
        """Print the owners of ``filename`` and return them."""
        owners = self.search_torrent(filename)
        if not owners:
            print(f"No owners found for file: {filename}")
        else:
            print(f"Owners of file {filename}:")
            for owner, _ in owners:
                print(f"Node {owner.node_id} ({owner.addr[0]}:{owner.addr[1]})")
        return owners

    def set_send_mode(self, filename: str) -> bool:
        """Offer an owned file to other nodes; return whether it was offered."""
        if filename not in self.files:
            self._log(f"You don't have {filename}")
            return False

        self._send_to_tracker(Node2Tracker(self.node_id, RequestMode.OWN, filename))
        self._log("FILE ENTRY REGISTERED! You are waiting for other nodes' requests!")

        if self._listener is None or not self._listener.is_alive():
            self._listener = threading.Thread(
                target=self._seeder.serve_forever, args=(self._stop,), daemon=True
            )
            self._listener.start()
        return True

    def set_download_mode(self, filename: str) -> Optional[Path]:
        """Download ``filename`` from its owners; return where it was written."""
        path = node_files_dir(self.node_id) / filename
        if path.exists():
            self._log("You already have this file!")
            return None

        self._log(f"Let's search {filename} in the torrent!")
        owners = self.search_torrent(filename)
        if not owners:
            self._log(f"No one has {filename}")
            return None
        return self.split_file_owners(owners, filename)

    def ask_file_size(self, filename: str, owner: FileOwner) -> int:
        """Ask ``owner`` for the size of ``filename``."""
        request = Node2Node(self.node_id, owner.node_id, filename, -1)
        with _temp_socket(self.response_timeout) as sock:
            send_segment(sock, request.encode(), owner.addr)
            while True:
                data, _ = sock.recvfrom(config.BUFFER_SIZE)
                if not data:
                    continue
                try:
                    answer = Node2Node.decode(data)
                except ValueError:
                    continue
                if answer.size > 0:
                    return answer.size

    def measure_latency(self, owner: FileOwner) -> Optional[int]:
        """Round-trip time to ``owner`` in milliseconds, or None if it is silent."""
        ip, port = owner.addr
        try:
            sock = _open_socket()
        except OSError:
            self._log("Error creating socket for latency measurement")
            return None
        sock.settimeout(self.ping_timeout)
        try:
            started = time.monotonic()
            self._log(f"Sending PING to {ip}:{port} node_id: {owner.node_id}")
            send_segment(sock, PING, owner.addr)
            data, _ = sock.recvfrom(config.BUFFER_SIZE)
        except OSError:
            return None
        finally:
            utils.free_socket(sock)
        if not data:
            return None

        latency = int((time.monotonic() - started) * 1000)
        self._log(f"Received PONG from {ip}:{port} node_id: {owner.node_id}")
        print(f"Latency to {ip}:{port} is {latency}ms")
        return latency

    def select_best_peers(
        self, peers: Iterable[tuple[FileOwner, int]], k: int
    ) -> list[FileOwner]:
        """Return up to ``k`` responsive peers, fastest first."""
        measured: list[tuple[FileOwner, int]] = []
        for owner, _ in peers:
            latency = self.measure_latency(owner)
            if latency is not None:
                measured.append((owner, latency))
                self._log(f"Latency to node {owner.node_id}: {latency}ms")
        measured.sort(key=lambda item: item[1])
        return [owner for owner, _ in measured[:max(k, 0)]]

    def receive_chunk(
        self, filename: str, rng: tuple[int, int], owner: FileOwner
    ) -> list[ChunkSharing]:
        """Request bytes ``rng`` of a file from ``owner`` and collect the pieces."""
        received: list[ChunkSharing] = []
        try:
            sock = _open_socket()
        except OSError:
            self._log("Error: Failed to create temporary socket")
            return received
        sock.settimeout(self.response_timeout)
        try:
            request = ChunkSharing(self.node_id, owner.node_id, filename, rng, -1)
            try:
                send_segment(sock, request.encode(), owner.addr)
            except OSError:
                self._log(
                    f"Error: Failed to send request for chunk of {filename} "
                    f"to node {owner.node_id}"
                )
                return received
            self._log(
                f"I sent a request for a chunk of {filename} for node {owner.node_id}"
            )

            retries = 0
            while retries < self.max_retries:
                try:
                    data, _ = sock.recvfrom(config.BUFFER_SIZE)
                except OSError:
                    retries += 1
                    continue
                if not data:
                    retries += 1
                    continue
                try:
                    piece = ChunkSharing.decode(data)
                except ValueError:
                    retries += 1
                    continue
                if piece.idx == -1:
                    return received
                with self._download_lock:
                    self.downloaded_files.setdefault(filename, []).append(piece)
                received.append(piece)
                retries = 0

            self._log(f"Error: Maximum retries reached for receiving chunks of {filename}")
            return received
        finally:
            utils.free_socket(sock)

    def split_file_owners(
        self, file_owners: Iterable[tuple[FileOwner, int]], filename: str
    ) -> Optional[Path]:
        """Download ``filename`` in parallel from the best owners and save it."""
        started = time.monotonic()
        owners = [item for item in file_owners if item[0].node_id != self.node_id]
        if not owners:
            self._log(f"No one has {filename}")
            return None

        peers = self.select_best_peers(owners, config.MAX_SPLITTNES_RATE)
        if not peers:
            self._log(f"No responsive peers found for {filename}")
            return None
        self._log(
            f"Downloading {filename} from nodes: "
            + "".join(f"{peer.node_id} " for peer in peers)
        )

        file_size = self.ask_file_size(filename, peers[0])
        self._log(f"File {filename} size: {file_size} bytes")
        ranges = split_ranges(file_size, len(peers))

        with self._download_lock:
            self.downloaded_files[filename] = []

        workers = [
            threading.Thread(
                target=self.receive_chunk, args=(filename, rng, peer), daemon=True
            )
            for rng, peer in zip(ranges, peers)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        download_ms = int((time.monotonic() - started) * 1000)
        self._log(f"All chunks of {filename} downloaded in {download_ms} ms")
        self._log(
            f"Average download speed: "
            f"{(file_size * 1000) // (max(download_ms, 1) * 1024)} KB/s"
        )

        self._log("Sorting chunks now...")
        with self._download_lock:
            chunks = sort_chunks(self.downloaded_files.pop(filename, []))
        self._log("All chunks sorted. Reassembling file...")

        path = node_files_dir(self.node_id) / filename
        reassemble_started = time.monotonic()
        try:
            reassemble_file(chunks, path)
        except (OSError, ValueError) as exc:
            self._log(f"Error: {exc}")
            return None
        reassemble_ms = int((time.monotonic() - reassemble_started) * 1000)
        self._log(f"File successfully reassembled: {path}")
        self._log(f"{filename} successfully reassembled in {reassemble_ms} ms")
        self._log(
            f"Total download and reassembly time: {download_ms + reassemble_ms} ms"
        )

        with self._files_lock:
            self.files.add(filename)
        self.set_send_mode(filename)
        return path

    def _download(self, filename: str) -> None:
        try:
            self.set_download_mode(filename)
        except (OSError, ValueError, EOFError) as exc:
            self._log(f"Error: Download of {filename} failed: {exc}")

    def run(self, lines: Optional[Iterable[str]] = None) -> None:
        """Join the torrent and execute commands read from ``lines``."""
        if lines is None:
            lines = sys.stdin
        self._log("********** Node program started just right now! **********")
        self.enter_torrent()

        threading.Thread(
            target=self.inform_tracker_periodically, args=(self._stop,), daemon=True
        ).start()

        print("********** ENTER YOUR COMMAND! **********")
        print(f"Available commands: {_COMMANDS}")

        for line in lines:
            mode, filename = utils.parse_command(line)
            if mode == "send":
                self.files = self._fetch_files()
                self.set_send_mode(filename)
            elif mode == "download":
                worker = threading.Thread(
                    target=self._download, args=(filename,), daemon=True
                )
                worker.start()
                self._downloads.append(worker)
            elif mode == "search":
                self.search_file_owners(filename)
            elif mode == "exit":
                self.exit_torrent()
                return
            else:
                print(f"Invalid command. Available commands: {_COMMANDS}")


def main(argv: Optional[list[str]] = None) -> int:
    """Start a node with the id given on the command line."""
    parser = argparse.ArgumentParser(
        prog="torrentlite-node", description="Run a file sharing node."
    )
    parser.add_argument("node_id", type=int, help="identifier of this node")
    args = parser.parse_args(argv)
    node = Node(args.node_id)
    try:
        node.run()
    finally:
        node.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())