import socket
import threading

import pytest

from torrentlite import config
from torrentlite.config import RequestMode
from torrentlite.messages import ChunkSharing, Node2Node, Node2Tracker
from torrentlite.seeder import Seeder, send_segment
from torrentlite.storage import node_files_dir

NODE_ID = 7
REQUESTER_ID = 3


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _udp():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5)
    return sock


@pytest.fixture
def sockets():
    made = []

    def make():
        sock = _udp()
        made.append(sock)
        return sock

    yield make
    for sock in made:
        sock.close()


def _write_file(name, content):
    directory = node_files_dir(NODE_ID)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_bytes(content)


def _collect_chunks(sock):
    pieces = []
    while True:
        data, _ = sock.recvfrom(config.BUFFER_SIZE)
        message = ChunkSharing.decode(data)
        if message.idx == -1:
            return pieces, message
        pieces.append(message)


def test_send_segment_delivers_payload(sockets):
    sender, receiver = sockets(), sockets()
    sent = send_segment(sender, b"hello", receiver.getsockname())
    data, _ = receiver.recvfrom(config.BUFFER_SIZE)
    assert data == b"hello"
    assert sent == len(b"hello")


def test_send_segment_rejects_empty_data(sockets):
    sender, receiver = sockets(), sockets()
    with pytest.raises(ValueError):
        send_segment(sender, b"", receiver.getsockname())


def test_send_segment_rejects_oversized_data(sockets):
    sender, receiver = sockets(), sockets()
    with pytest.raises(ValueError):
        send_segment(
            sender, b"x" * (config.MAX_UDP_SEGMENT_DATA_SIZE + 1), receiver.getsockname()
        )


def test_handle_ping_answers_pong(sockets):
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    seeder.handle_ping(client.getsockname())
    data, _ = client.recvfrom(config.BUFFER_SIZE)
    assert data == b"PONG"


def test_handle_request_ping(sockets):
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    seeder.handle_request(b"PING", client.getsockname())
    data, _ = client.recvfrom(config.BUFFER_SIZE)
    assert data == b"PONG"


def test_size_query_is_answered(sockets):
    content = b"some shared content"
    _write_file("a.txt", content)
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    query = Node2Node(REQUESTER_ID, NODE_ID, "a.txt")
    seeder.handle_request(query.encode(), client.getsockname())
    data, _ = client.recvfrom(config.BUFFER_SIZE)
    answer = Node2Node.decode(data)
    assert answer == Node2Node(NODE_ID, REQUESTER_ID, "a.txt", len(content))


def test_send_file_size_returns_size(sockets):
    content = b"0123456789"
    _write_file("b.bin", content)
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    size = seeder.send_file_size(
        Node2Node(REQUESTER_ID, NODE_ID, "b.bin"), client.getsockname()
    )
    assert size == len(content)


def test_send_file_size_missing_file(sockets):
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    with pytest.raises(FileNotFoundError):
        seeder.send_file_size(
            Node2Node(REQUESTER_ID, NODE_ID, "missing.txt"), client.getsockname()
        )


def test_send_chunk_sends_pieces_marker_and_update(sockets):
    content = bytes(range(256)) * ((2 * config.CHUNK_PIECES_SIZE + 100) // 256 + 1)
    _write_file("big.bin", content)
    tracker = sockets()
    seeder = Seeder(NODE_ID, sockets(), tracker.getsockname())
    client = sockets()
    rng = (10, len(content) - 5)

    total = seeder.send_chunk("big.bin", rng, REQUESTER_ID, client.getsockname())

    pieces, marker = _collect_chunks(client)
    assert total == rng[1] - rng[0]
    assert b"".join(p.chunk for p in sorted(pieces, key=lambda p: p.idx)) == content[rng[0]:rng[1]]
    assert all(len(p.chunk) <= config.CHUNK_PIECES_SIZE for p in pieces)
    assert sorted(p.idx for p in pieces) == list(range(len(pieces)))
    assert all(p.src_node_id == NODE_ID and p.dest_node_id == REQUESTER_ID for p in pieces)
    assert marker.chunk == b""
    assert marker.range == rng

    data, _ = tracker.recvfrom(config.BUFFER_SIZE)
    assert Node2Tracker.decode(data) == Node2Tracker(NODE_ID, RequestMode.UPDATE, "big.bin")


def test_send_chunk_invalid_range(sockets):
    _write_file("c.bin", b"abcdef")
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    with pytest.raises(ValueError):
        seeder.send_chunk("c.bin", (4, 2), REQUESTER_ID, client.getsockname())


def test_send_chunk_missing_file(sockets):
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    with pytest.raises(FileNotFoundError):
        seeder.send_chunk("nope.bin", (0, 3), REQUESTER_ID, client.getsockname())


def test_handle_request_chunk_request(sockets):
    content = b"the quick brown fox jumps"
    _write_file("d.txt", content)
    tracker = sockets()
    seeder = Seeder(NODE_ID, sockets(), tracker.getsockname())
    client = sockets()
    request = ChunkSharing(REQUESTER_ID, NODE_ID, "d.txt", (4, 15))
    seeder.handle_request(request.encode(), client.getsockname())
    pieces, _ = _collect_chunks(client)
    assert b"".join(p.chunk for p in pieces) == content[4:15]


def test_handle_request_without_filename(sockets):
    seeder = Seeder(NODE_ID, sockets())
    client = sockets()
    data = Node2Tracker(REQUESTER_ID, RequestMode.NEED, "x").encode()
    stripped = data.replace(b"filename", b"filenamX")
    with pytest.raises(ValueError):
        seeder.handle_request(stripped, client.getsockname())


def test_serve_forever_answers_until_stopped(sockets):
    seeder_sock = sockets()
    seeder = Seeder(NODE_ID, seeder_sock)
    stop = threading.Event()
    worker = threading.Thread(target=seeder.serve_forever, args=(stop,), daemon=True)
    worker.start()
    try:
        client = sockets()
        client.sendto(b"PING", seeder_sock.getsockname())
        data, _ = client.recvfrom(config.BUFFER_SIZE)
        assert data == b"PONG"
    finally:
        stop.set()
        worker.join(timeout=5)
    assert not worker.is_alive()