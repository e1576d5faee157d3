"""Local file storage for a node: owned files, chunk splitting and reassembly."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from torrentlite import config
from torrentlite.messages import ChunkSharing


def node_files_dir(node_id: int) -> Path:
    """Return the directory that holds the files shared by ``node_id``."""
    return Path(config.NODE_FILES_DIR) / f"node{node_id}"


def create_directory_recursive(path: str | Path) -> Path:
    """Create ``path`` and every missing parent directory.

    Raises ``NotADirectoryError`` if some component exists but is not a
    directory.
    """
    directory = Path(path)
    parts = directory.parts
    for depth in range(1, len(parts) + 1):
        current = Path(*parts[:depth])
        if current.exists():
            if not current.is_dir():
                raise NotADirectoryError(f"{current} exists but is not a directory")
            continue
        try:
            current.mkdir()
        except FileExistsError:
            if not current.is_dir():
                raise NotADirectoryError(
                    f"{current} exists but is not a directory"
                ) from None
    return directory


def fetch_owned_files(node_id: int) -> set[str]:
    """Return the names of the regular files in the node's directory.

    The directory is created if it does not exist yet.
    """
    directory = create_directory_recursive(node_files_dir(node_id))
    return {entry.name for entry in directory.iterdir() if entry.is_file()}


def split_file_to_chunks(file_path: str | Path, rng: tuple[int, int]) -> list[bytes]:
    """Read bytes ``rng[0]:rng[1]`` of a file and cut them into pieces.

    Each piece is at most ``CHUNK_PIECES_SIZE`` bytes. Raises ``ValueError``
    for an invalid range and ``EOFError`` if the file is shorter than the range.
    """
    start, end = rng
    if start < 0 or end < start:
        raise ValueError("Invalid range specified")
    size = end - start
    with open(file_path, "rb") as stream:
        stream.seek(start)
        buffer = stream.read(size)
    if len(buffer) != size:
        raise EOFError(f"only {len(buffer)} bytes read out of {size}")

    piece_size = config.CHUNK_PIECES_SIZE
    if piece_size <= 0:
        raise ValueError("Invalid piece size: must be greater than 0")
    return [buffer[pos:pos + piece_size] for pos in range(0, len(buffer), piece_size)]


def reassemble_file(chunks: Iterable[ChunkSharing], file_path: str | Path) -> int:
    """Write the data of ``chunks`` in order to ``file_path``, replacing it.

    Returns the number of bytes written. Raises ``ValueError`` when there
    are no chunks.
    """
    pieces = [chunk.chunk for chunk in chunks]
    if not pieces:
        raise ValueError("No chunks provided for reassembly")

    target = Path(file_path)
    if target.parent != Path(""):
        create_directory_recursive(target.parent)
    with target.open("wb") as stream:
        for piece in pieces:
            stream.write(piece)
        stream.flush()
    return sum(len(piece) for piece in pieces)


def sort_chunks(chunks: Iterable[ChunkSharing]) -> list[ChunkSharing]:
    """Order chunks by the start of their range, then by piece index."""
    return sorted(chunks, key=lambda chunk: (chunk.range[0], chunk.idx))


def split_ranges(file_size: int, parts: int) -> list[tuple[int, int]]:
    """Divide ``file_size`` bytes into ``parts`` contiguous ranges.

    All ranges have the same length except the last, which also takes the
    remainder.
    """
    if parts <= 0:
        raise ValueError("parts must be greater than 0")
    if file_size < 0:
        raise ValueError("file_size must not be negative")
    step, remainder = divmod(file_size, parts)
    ranges = []
    for i in range(parts):
        start = step * i
        end = start + step + (remainder if i == parts - 1 else 0)
        ranges.append((start, end))
    return ranges