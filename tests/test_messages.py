import pytest

from torrentlite.config import RequestMode
from torrentlite.messages import (
    ChunkSharing,
    FileOwner,
    Node2Node,
    Node2Tracker,
    Tracker2Node,
    decode_properties,
    deserialize_result,
    encode_properties,
    serialize_result,
)


def test_encode_properties_wire_layout():
    assert encode_properties({"a": "b"}) == b"\x01\x00\x00\x00a\x01\x00\x00\x00b"


def test_encode_empty_mapping_is_empty():
    assert encode_properties({}) == b""
    assert decode_properties(b"") == {}


def test_properties_round_trip_with_binary_value():
    props = {"filename": "movie.mkv", "chunk": bytes(range(256))}
    decoded = decode_properties(encode_properties(props))
    assert decoded == {"filename": b"movie.mkv", "chunk": bytes(range(256))}


def test_decode_truncated_data_raises():
    data = encode_properties({"key": "value"})
    with pytest.raises(ValueError):
        decode_properties(data[:-2])


def test_serialize_result_format():
    result = [(FileOwner(1, ("127.0.0.1", 5000)), 3)]
    assert serialize_result(result) == "(1,127.0.0.1,5000):3;"


def test_result_round_trip():
    result = [
        (FileOwner(1, ("127.0.0.1", 5000)), 3),
        (FileOwner(7, ("10.0.0.2", 40000)), 0),
    ]
    assert deserialize_result(serialize_result(result)) == result


def test_deserialize_skips_malformed_entries():
    good = serialize_result([(FileOwner(2, ("127.0.0.1", 6000)), 1)])
    text = "garbage;(5,nocomma):2;;" + good
    assert deserialize_result(text) == [(FileOwner(2, ("127.0.0.1", 6000)), 1)]


def test_deserialize_bad_frequency_raises():
    with pytest.raises(ValueError):
        deserialize_result("(1,127.0.0.1,5000):x;")


def test_node2node_round_trip_and_default_size():
    msg = Node2Node(1, 2, "file.txt")
    assert msg.size == -1
    decoded = Node2Node.decode(msg.encode())
    assert decoded == msg


def test_node2node_properties_contains_size():
    props = decode_properties(Node2Node(3, 4, "a.bin", 1024).encode())
    assert props["size"] == b"1024"
    assert props["filename"] == b"a.bin"


def test_node2node_missing_property_raises():
    with pytest.raises(ValueError):
        Node2Node.decode(encode_properties({"src_node_id": "1"}))


def test_node2tracker_round_trip():
    msg = Node2Tracker(9, RequestMode.NEED, "song.mp3")
    decoded = Node2Tracker.decode(msg.encode())
    assert decoded.node_id == 9
    assert decoded.mode == RequestMode.NEED
    assert decoded.filename == "song.mp3"


def test_node2tracker_mode_is_numeric_on_wire():
    props = decode_properties(Node2Tracker(1, RequestMode.HEARTBEAT, "").encode())
    assert props["mode"] == b"5"
    assert props["filename"] == b""


def test_tracker2node_round_trip():
    result = [(FileOwner(4, ("127.0.0.1", 12000)), 2)]
    msg = Tracker2Node(8, result, "doc.pdf")
    decoded = Tracker2Node.decode(msg.encode())
    assert decoded == msg


def test_tracker2node_empty_result():
    decoded = Tracker2Node.decode(Tracker2Node(1, [], "none").encode())
    assert decoded.search_result == []
    assert decoded.filename == "none"


def test_chunk_sharing_round_trip_with_binary_chunk():
    chunk = bytes([0, 255, 10, 13, 0]) * 100
    msg = ChunkSharing(1, 2, "data.bin", (0, 500), 3, chunk)
    decoded = ChunkSharing.decode(msg.encode())
    assert decoded == msg
    assert decoded.chunk == chunk


def test_chunk_sharing_request_defaults():
    msg = ChunkSharing(1, 2, "data.bin", (10, 20))
    decoded = ChunkSharing.decode(msg.encode())
    assert decoded.idx == -1
    assert decoded.chunk == b""
    assert decoded.range == (10, 20)


@pytest.mark.parametrize("rng", [(-1, 5), (10, 5)])
def test_chunk_sharing_invalid_range(rng):
    with pytest.raises(ValueError):
        ChunkSharing(1, 2, "f", rng)


def test_chunk_sharing_missing_property_raises():
    props = ChunkSharing(1, 2, "f", (0, 1)).properties()
    del props["chunk"]
    with pytest.raises(ValueError):
        ChunkSharing.decode(encode_properties(props))


def test_size_property_distinguishes_message_kinds():
    size_props = decode_properties(Node2Node(1, 2, "f").encode())
    chunk_props = decode_properties(ChunkSharing(1, 2, "f", (0, 4)).encode())
    assert "size" in size_props and "range_start" not in size_props
    assert "range_start" in chunk_props and "size" not in chunk_props