"""Shared settings, request modes and the UDP segment wrapper."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

LOGS_DIR = "logs/"
NODE_FILES_DIR = "node_files/"
TRACKER_DB_DIR = "tracker_db/"

AVAILABLE_PORT_MIN = 1024
AVAILABLE_PORT_MAX = 65535

TRACKER_IP = "127.0.0.1"
TRACKER_PORT = 12345

MAX_UDP_SEGMENT_DATA_SIZE = 65527
BUFFER_SIZE = 92169
CHUNK_PIECES_SIZE = 9216 - 2000

MAX_SPLITTNES_RATE = 10
WORKER_THREADS = 50

NODE_TIME_INTERVAL = 30
TRACKER_TIME_INTERVAL = 45

HEARTBEAT_LOG_LINE = "I informed the tracker that I'm still alive in the torrent!"


class RequestMode(IntEnum):
    """Kinds of request a node sends to the tracker."""

    REGISTER = 0
    OWN = 1
    NEED = 2
    UPDATE = 3
    EXIT = 4
    HEARTBEAT = 5


@dataclass(frozen=True)
class UDPSegment:
    """A UDP payload with its ports, limited to the maximum segment size."""

    src_port: int
    dest_port: int
    data: bytes = field(default=b"")

    def __post_init__(self) -> None:
        if len(self.data) > MAX_UDP_SEGMENT_DATA_SIZE:
            raise ValueError("MAXIMUM DATA SIZE OF A UDP SEGMENT EXCEEDED!")

    @property
    def length(self) -> int:
        return len(self.data)