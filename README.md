# torrentlite

A small peer-to-peer file sharing system that runs over UDP. A central
tracker records which node owns which file. Each node can announce a file it
has, search for the owners of a file, and download a file in parallel parts
from the owners that answer a latency probe fastest.

## Install

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Running

Start the tracker first. It binds UDP port 12345 on all interfaces; nodes
contact it at `127.0.0.1:12345`, so tracker and nodes run on the same machine:

```
torrentlite-tracker
```

Then start one or more nodes, each with its own numeric id:

```
torrentlite-node 1
torrentlite-node 2
```

A node creates the directories `logs/`, `node_files/` and `tracker_db/` in
the current directory if they are missing. It shares the regular files in
`node_files/node<id>/`. Each node logs to `logs/node<id>.log` and the
tracker to `logs/_tracker.log`; log lines are also printed with a time stamp.
After every change the tracker writes its state to
`tracker_db/nodes_Freq_list.txt` (uploads completed per node) and
`tracker_db/files_Owners_list.txt` (owners of each file).

## Node commands

A running node reads one command per line from standard input:

| Command               | Effect                                                                              |
|-----------------------|-------------------------------------------------------------------------------------|
| `send <filename>`     | Rescan the node's directory, tell the tracker you own the file, then serve requests. |
| `download <filename>` | In the background: find the owners, pick the fastest, download in parts, reassemble. |
| `search <filename>`   | Print the nodes that own the file.                                                   |
| `exit`                | Tell the tracker you are leaving, then stop.                                         |

A command takes at most one file name, so names with spaces are not
supported. `send` only works for a file already in the node's directory, and
`download` does nothing if the file is already there.

A download asks each owner for a PING/PONG round trip (5 second timeout) and
uses up to ten responsive owners, fastest first. The size is asked of the
fastest owner, the file is split into equal byte ranges (the last range also
takes the remainder), and each owner sends its range in pieces of at most
7216 bytes followed by an end marker. The pieces are sorted by range and
index and written to `node_files/node<id>/<filename>`; the node then starts
sharing the file itself. A serving node reports each completed upload to the
tracker, which counts it per node.

## Liveness

Every node sends a heartbeat to the tracker every 30 seconds. The tracker
checks every 45 seconds: nodes that reported since the last check are kept,
and a node that did not is removed from all records.

## Library use

- `torrentlite.messages` holds the wire messages `Node2Tracker`,
  `Tracker2Node`, `Node2Node` and `ChunkSharing`, each with `encode()` and a
  `decode()` classmethod, plus `FileOwner`, `encode_properties` and
  `decode_properties`.
- `torrentlite.storage` has file helpers that need no network:
  `fetch_owned_files`, `split_file_to_chunks`, `split_ranges`, `sort_chunks`
  and `reassemble_file`.
- `torrentlite.tracker.Tracker(port, db_dir)` is a context manager; call
  `run()` to serve until interrupted.
- `torrentlite.node.Node(node_id, tracker_addr)` runs the command loop with
  `run(lines)`, reading from any iterable of lines (standard input by default).
- `torrentlite.config` holds the ports, intervals, sizes and `RequestMode`.

```python
from torrentlite.config import RequestMode
from torrentlite.messages import Node2Tracker
from torrentlite.storage import split_ranges

data = Node2Tracker(1, RequestMode.NEED, "song.mp3").encode()
assert Node2Tracker.decode(data).filename == "song.mp3"

assert split_ranges(10, 3) == [(0, 3), (3, 6), (6, 10)]
```

## What it does not do

- Parts are sent as plain UDP datagrams. Lost or reordered datagrams are not
  requested again, and there is no checksum, so a download can end up
  incomplete without being noticed.
- The tracker keeps its records in memory only. The text files in
  `tracker_db/` are written for inspection and are not read back at start.
- The `torrentlite-tracker` and `torrentlite-node` commands take no options
  for the tracker address or port; use the `Tracker` and `Node` classes for
  other addresses.