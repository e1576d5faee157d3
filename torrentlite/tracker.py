"""The tracker: keeps track of which nodes own which files and which are alive."""

from __future__ import annotations

import argparse
import re
import socket
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Mapping, Union

from torrentlite import config, utils
from torrentlite.config import RequestMode, UDPSegment
from torrentlite.messages import FileOwner, Tracker2Node, decode_properties

PropertyValue = Union[str, bytes]
Address = tuple[str, int]
NodeEntry = tuple[int, Address]

_POLL_INTERVAL = 0.5
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def _text(value: PropertyValue) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="surrogateescape")
    return value


def _int(value: PropertyValue) -> int:
    text = _text(value)
    match = _INT_PREFIX.match(text)
    if match is None:
        raise ValueError(f"Not an integer: {text!r}")
    return int(match.group(1))


def _address(addr: Address) -> Address:
    ip, port = addr
    return str(ip), int(port)


class Tracker:
    """Tracks file owners, sharing frequencies and node liveness over UDP."""

    def __init__(
        self,
        port: int = config.TRACKER_PORT,
        db_dir: str | Path = config.TRACKER_DB_DIR,
    ) -> None:
        self.sock = utils.set_socket(port)
        self.port: int = self.sock.getsockname()[1]
        self.db_dir = Path(db_dir)
        self.file_owners_list: dict[str, list[FileOwner]] = {}
        self.send_freq_list: dict[int, int] = {}
        self.has_informed_tracker: dict[NodeEntry, bool] = {}
        self._data_lock = threading.RLock()
        self._log_lock = threading.Lock()

    def close(self) -> None:
        """Release the tracker's socket."""
        utils.free_socket(self.sock)

    def __enter__(self) -> Tracker:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _log(self, content: str) -> None:
        with self._log_lock:
            utils.log(0, content, True)

    def save_db_as_txt(self) -> None:
        """Write the frequency list and the owners list as text files."""
        directory = self.db_dir
        if not directory.exists():
            try:
                directory.mkdir()
            except FileExistsError:
                pass
            except OSError as exc:
                print(f"Error: Failed to create directory {directory}: {exc}", file=sys.stderr)
                return
        elif not directory.is_dir():
            print(f"Error: {directory} exists but is not a directory", file=sys.stderr)
            return

        with self._data_lock:
            freqs = list(self.send_freq_list.items())
            owners = [(name, list(items)) for name, items in self.file_owners_list.items()]

        nodes_path = directory / "nodes_Freq_list.txt"
        try:
            with nodes_path.open("w", encoding="utf-8") as stream:
                stream.writelines(f"node{node_id} {freq}\n" for node_id, freq in freqs)
        except OSError:
            print(f"Error: Could not open {nodes_path} for writing.", file=sys.stderr)

        files_path = directory / "files_Owners_list.txt"
        try:
            with files_path.open("w", encoding="utf-8") as stream:
                for filename, file_owners in owners:
                    entries = "".join(
                        f"({owner.node_id}, {owner.addr[0]}, {owner.addr[1]}) "
                        for owner in file_owners
                    )
                    stream.write(f"{filename} : {entries}\n")
        except OSError:
            print(f"Error: Could not open {files_path} for writing.", file=sys.stderr)

    def remove_node(self, node_id: int, ip: str, port: int) -> None:
        """Drop a node from every record and persist the result."""
        with self._data_lock:
            self.send_freq_list.pop(node_id, None)
            self.has_informed_tracker.pop((node_id, (ip, port)), None)
            remaining: dict[str, list[FileOwner]] = {}
            for filename, owners in self.file_owners_list.items():
                kept = [owner for owner in owners if owner.node_id != node_id]
                if kept:
                    remaining[filename] = kept
            self.file_owners_list = remaining
        self.save_db_as_txt()

    def check_nodes(self) -> tuple[set[int], set[int]]:
        """Run one liveness pass and return the ids of alive and dead nodes.

        Nodes that reported since the last pass are marked as not yet reported;
        nodes that did not are removed.
        """
        alive: set[int] = set()
        dead: set[int] = set()
        to_remove: list[NodeEntry] = []
        with self._data_lock:
            for entry, informed in list(self.has_informed_tracker.items()):
                if informed:
                    self.has_informed_tracker[entry] = False
                    alive.add(entry[0])
                else:
                    dead.add(entry[0])
                    to_remove.append(entry)

        for node_id, (ip, port) in to_remove:
            self.remove_node(node_id, ip, port)

        if alive or dead:
            content = "=== Node Status ===\nAlive: "
            content += "".join(f"{node_id} " for node_id in alive)
            content += "\nDead: "
            content += "".join(f"{node_id} " for node_id in dead)
            self._log(content)
        return alive, dead

    def check_nodes_periodically(self, stop: threading.Event) -> None:
        """Check liveness every tracker interval until ``stop`` is set."""
        while True:
            self.check_nodes()
            if stop.wait(config.TRACKER_TIME_INTERVAL):
                return

    def handle_node_request(
        self, properties: Mapping[str, PropertyValue], addr: Address
    ) -> None:
        """Act on one decoded node request received from ``addr``."""
        addr = _address(addr)
        try:
            mode = _int(properties["mode"])
            node_id = _int(properties["node_id"])
            try:
                request = RequestMode(mode)
            except ValueError:
                print(
                    f"Error: Invalid mode {mode} received from node {node_id}",
                    file=sys.stderr,
                )
                return

            if request is RequestMode.OWN:
                self.add_file_owner(properties, addr)
            elif request is RequestMode.NEED:
                self.search_file(properties, addr)
            elif request is RequestMode.UPDATE:
                self.update_db(properties)
            elif request is RequestMode.REGISTER:
                with self._data_lock:
                    self.has_informed_tracker[(node_id, addr)] = True
                self.sock.sendto(b"ACK", addr)
                self._log(f"ACK sent to Node {node_id} at {addr[0]}:{addr[1]}")
            elif request is RequestMode.EXIT:
                self.remove_node(node_id, addr[0], addr[1])
                self._log(f"Node {node_id} exited the torrent intentionally.")
            elif request is RequestMode.HEARTBEAT:
                with self._data_lock:
                    self.has_informed_tracker[(node_id, addr)] = True
        except (KeyError, ValueError, OSError) as exc:
            print(f"Error handling node request: {exc}", file=sys.stderr)

    def add_file_owner(
        self, properties: Mapping[str, PropertyValue], addr: Address
    ) -> None:
        """Record that the requesting node owns a file."""
        filename = _text(properties["filename"])
        node_id = _int(properties["node_id"])
        self._log(f"Node {node_id} owns {filename} and is ready to send.")
        with self._data_lock:
            self.file_owners_list.setdefault(filename, []).append(
                FileOwner(node_id, _address(addr))
            )
        self.save_db_as_txt()

    def search_file(
        self, properties: Mapping[str, PropertyValue], addr: Address
    ) -> None:
        """Send the owners of a file, with their frequencies, back to ``addr``."""
        filename = _text(properties["filename"])
        node_id = _int(properties["node_id"])
        self._log(f"Node {node_id} is searching for {filename}")

        with self._data_lock:
            result = [
                (owner, self.send_freq_list.setdefault(owner.node_id, 0))
                for owner in self.file_owners_list.get(filename, [])
            ]

        for owner, freq in result:
            print(f"Node ID: {owner.node_id}, Frequency: {freq}")

        response = Tracker2Node(node_id, result, filename)
        self.send_segment(response.encode(), addr)

    def update_db(self, properties: Mapping[str, PropertyValue]) -> None:
        """Count one more completed upload for the requesting node."""
        filename = _text(properties["filename"])
        node_id = _int(properties["node_id"])
        self._log(f"Node {node_id} updated the file list for {filename}")
        with self._data_lock:
            self.send_freq_list[node_id] = self.send_freq_list.get(node_id, 0) + 1
        self.save_db_as_txt()

    def send_segment(self, data: bytes, addr: Address) -> None:
        """Send ``data`` to ``addr``; oversized payloads raise ``ValueError``."""
        addr = _address(addr)
        segment = UDPSegment(self.port, addr[1], bytes(data))
        self.sock.sendto(segment.data, addr)

    def _dispatch(self, properties: dict[str, bytes], addr: Address) -> None:
        try:
            self.handle_node_request(properties, addr)
        except Exception as exc:  # keep the worker pool alive
            self._log(f"Error handling request: {exc}")

    def listen(self, stop: threading.Event) -> None:
        """Receive and dispatch node requests until ``stop`` is set."""
        checker = threading.Thread(
            target=self.check_nodes_periodically, args=(stop,), daemon=True
        )
        checker.start()
        self.sock.settimeout(_POLL_INTERVAL)

        with ThreadPoolExecutor(max_workers=config.WORKER_THREADS) as pool:
            while not stop.is_set():
                try:
                    data, addr = self.sock.recvfrom(config.BUFFER_SIZE)
                except TimeoutError:
                    continue
                except OSError:
                    if stop.is_set() or self.sock.fileno() < 0:
                        break
                    self._log("recvfrom failed")
                    continue
                if not data:
                    continue
                try:
                    properties = decode_properties(data)
                except ValueError as exc:
                    self._log(f"Error decoding message: {exc}")
                    continue
                pool.submit(self._dispatch, properties, addr)

        checker.join(timeout=_POLL_INTERVAL * 4)

    def run(self) -> None:
        """Serve requests until interrupted."""
        self._log("***************** Tracker program started! *****************")
        stop = threading.Event()
        try:
            self.listen(stop)
        except KeyboardInterrupt:
            pass
        finally:
            stop.set()


def main(argv: list[str] | None = None) -> int:
    """Start the tracker on the configured port."""
    parser = argparse.ArgumentParser(
        prog="torrentlite-tracker",
        description="Run the file sharing tracker.",
    )
    parser.parse_args(argv)
    with Tracker() as tracker:
        tracker.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())