"""Wire messages exchanged between nodes and the tracker.

Every message is a set of string properties packed as
``[key length][key][value length][value]...`` with 4-byte little-endian
lengths.
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from typing import Mapping, Union

PropertyValue = Union[str, bytes]

_LENGTH = struct.Struct("<I")
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def _to_bytes(value: PropertyValue) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8", errors="surrogateescape")


def _to_text(value: bytes) -> str:
    return value.decode("utf-8", errors="surrogateescape")


def _parse_int(value: bytes | str) -> int:
    """Read a leading integer, ignoring leading blanks and trailing text."""
    text = _to_text(value) if isinstance(value, bytes) else value
    match = _INT_PREFIX.match(text)
    if match is None:
        raise ValueError(f"Not an integer: {text!r}")
    return int(match.group(1))


def encode_properties(properties: Mapping[str, PropertyValue]) -> bytes:
    """Pack a property mapping into its binary wire form."""
    parts: list[bytes] = []
    for key, value in properties.items():
        raw_key = _to_bytes(key)
        raw_value = _to_bytes(value)
        parts += [_LENGTH.pack(len(raw_key)), raw_key, _LENGTH.pack(len(raw_value)), raw_value]
    return b"".join(parts)


def decode_properties(data: bytes) -> dict[str, bytes]:
    """Unpack binary wire data into a mapping of key to raw value."""
    view = memoryview(bytes(data))
    result: dict[str, bytes] = {}
    pos = 0

    def take(count: int) -> bytes:
        nonlocal pos
        if pos + count > len(view):
            raise ValueError("Truncated message data")
        chunk = view[pos:pos + count].tobytes()
        pos += count
        return chunk

    while pos < len(view):
        (key_len,) = _LENGTH.unpack(take(_LENGTH.size))
        key = _to_text(take(key_len))
        (value_len,) = _LENGTH.unpack(take(_LENGTH.size))
        result[key] = take(value_len)
    return result


def _require(properties: Mapping[str, bytes], *keys: str) -> None:
    missing = [key for key in keys if key not in properties]
    if missing:
        raise ValueError(
            "Missing required properties in decoded message: " + ", ".join(missing)
        )


@dataclass(frozen=True)
class FileOwner:
    """A node that owns a file, with its (ip, port) address."""

    node_id: int
    addr: tuple[str, int]


def serialize_result(result: list[tuple[FileOwner, int]]) -> str:
    """Render search results as ``(node_id,ip,port):frequency;`` entries."""
    return "".join(
        f"({owner.node_id},{owner.addr[0]},{owner.addr[1]}):{freq};"
        for owner, freq in result
    )


def deserialize_result(serialized: str) -> list[tuple[FileOwner, int]]:
    """Parse search results, skipping entries that are not well formed."""
    result: list[tuple[FileOwner, int]] = []
    for part in serialized.split(";"):
        if not part:
            continue
        node_str, colon, freq_str = part.partition(":")
        if not colon:
            continue
        freq = _parse_int(freq_str)

        first_comma = node_str.find(",")
        last_comma = node_str.rfind(",")
        if first_comma < 0 or first_comma == last_comma:
            continue

        node_id = _parse_int(node_str[1:first_comma])
        ip = node_str[first_comma + 1:last_comma]
        port = _parse_int(node_str[last_comma + 1:len(node_str) - 1])
        result.append((FileOwner(node_id, (ip, port)), freq))
    return result


@dataclass
class Node2Node:
    """A peer-to-peer file size query (``size == -1``) or answer."""

    src_node_id: int
    dest_node_id: int
    filename: str
    size: int = -1

    def properties(self) -> dict[str, PropertyValue]:
        return {
            "src_node_id": str(self.src_node_id),
            "dest_node_id": str(self.dest_node_id),
            "filename": self.filename,
            "size": str(self.size),
        }

    def encode(self) -> bytes:
        return encode_properties(self.properties())

    @classmethod
    def decode(cls, data: bytes) -> Node2Node:
        props = decode_properties(data)
        _require(props, "src_node_id", "dest_node_id", "filename", "size")
        return cls(
            _parse_int(props["src_node_id"]),
            _parse_int(props["dest_node_id"]),
            _to_text(props["filename"]),
            _parse_int(props["size"]),
        )


@dataclass
class Node2Tracker:
    """A request from a node to the tracker."""

    node_id: int
    mode: int
    filename: str = ""

    def properties(self) -> dict[str, PropertyValue]:
        return {
            "node_id": str(self.node_id),
            "mode": str(int(self.mode)),
            "filename": self.filename,
        }

    def encode(self) -> bytes:
        return encode_properties(self.properties())

    @classmethod
    def decode(cls, data: bytes) -> Node2Tracker:
        props = decode_properties(data)
        _require(props, "node_id", "mode", "filename")
        return cls(
            _parse_int(props["node_id"]),
            _parse_int(props["mode"]),
            _to_text(props["filename"]),
        )


@dataclass
class Tracker2Node:
    """The tracker's answer to a search: owners of a file and their frequency."""

    dest_node_id: int
    search_result: list[tuple[FileOwner, int]]
    filename: str

    def properties(self) -> dict[str, PropertyValue]:
        return {
            "dest_node_id": str(self.dest_node_id),
            "filename": self.filename,
            "search_result": serialize_result(self.search_result),
        }

    def encode(self) -> bytes:
        return encode_properties(self.properties())

    @classmethod
    def decode(cls, data: bytes) -> Tracker2Node:
        props = decode_properties(data)
        _require(props, "dest_node_id", "filename", "search_result")
        return cls(
            _parse_int(props["dest_node_id"]),
            deserialize_result(_to_text(props["search_result"])),
            _to_text(props["filename"]),
        )


@dataclass
class ChunkSharing:
    """A chunk request (empty ``chunk``), a chunk piece, or the end marker (``idx == -1``)."""

    src_node_id: int
    dest_node_id: int
    filename: str
    range: tuple[int, int]
    idx: int = -1
    chunk: bytes = field(default=b"")

    def __post_init__(self) -> None:
        start, end = self.range
        if start < 0 or end < start:
            raise ValueError(
                "Invalid range: start must be >= 0 and end must be >= start"
            )
        self.range = (start, end)
        self.chunk = bytes(self.chunk)

    def properties(self) -> dict[str, PropertyValue]:
        return {
            "src_node_id": str(self.src_node_id),
            "dest_node_id": str(self.dest_node_id),
            "filename": self.filename,
            "range_start": str(self.range[0]),
            "range_end": str(self.range[1]),
            "idx": str(self.idx),
            "chunk": self.chunk,
        }

    def encode(self) -> bytes:
        return encode_properties(self.properties())

    @classmethod
    def decode(cls, data: bytes) -> ChunkSharing:
        props = decode_properties(data)
        _require(
            props,
            "src_node_id",
            "dest_node_id",
            "filename",
            "range_start",
            "range_end",
            "idx",
            "chunk",
        )
        return cls(
            _parse_int(props["src_node_id"]),
            _parse_int(props["dest_node_id"]),
            _to_text(props["filename"]),
            (_parse_int(props["range_start"]), _parse_int(props["range_end"])),
            _parse_int(props["idx"]),
            props["chunk"],
        )