"""In-memory namespace and chunk metadata rebuilt from the operation log."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterator

from sortedcontainers import SortedDict

ChunkHandle = uuid.UUID

_U32 = 0xFFFFFFFF


def parse_chunk_handle(text: str) -> ChunkHandle:
    """Parse the textual form of a chunk handle."""
    try:
        return uuid.UUID(text)
    except (ValueError, TypeError, AttributeError) as exc:
        raise ValueError(f"invalid chunk handle: {text!r}") from exc


@dataclass(frozen=True, order=True)
class MetadataKey:
    """Position of an inode in the namespace: its parent and its name."""

    parent_ino: int
    name: str


@dataclass
class Inode:
    ino: int
    size: int = 0
    mtime: int = 0
    nlink: int = 0
    mode: int = 0
    uid: int = 0
    gid: int = 0
    xattr: dict[str, bytes] = field(default_factory=dict)
    chunks: dict[int, ChunkHandle] = field(default_factory=dict)

    def make_attr(self, mode: int, uid: int, gid: int) -> None:
        """Set the mode (file type bits included), owner and group."""
        self.mode = mode & _U32
        self.uid = uid & _U32
        self.gid = gid & _U32


@dataclass
class ChunkMetadata:
    version: int = 0
    size: int = 0
    locations: list[str] = field(default_factory=list)


class MetadataTree:
    """Inodes ordered by (parent inode, name)."""

    def __init__(self) -> None:
        self._items: SortedDict = SortedDict()

    def insert(self, key: MetadataKey, inode: Inode) -> Inode | None:
        """Insert or replace; return the inode previously stored under ``key``."""
        previous = self._items.get(key)
        self._items[key] = inode
        return previous

    def delete(self, key: MetadataKey) -> Inode | None:
        """Remove ``key``; return its inode, or None if it was absent."""
        return self._items.pop(key, None)

    def get(self, key: MetadataKey) -> Inode | None:
        return self._items.get(key)

    def find_by_ino(self, ino: int) -> tuple[MetadataKey, Inode] | None:
        """The first entry, in key order, whose inode number is ``ino``."""
        return next(
            ((key, inode) for key, inode in self._items.items() if inode.ino == ino),
            None,
        )

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[tuple[MetadataKey, Inode]]:
        return iter(list(self._items.items()))


@dataclass
class MasterState:
    """The master's namespace tree, chunk table and next free inode number."""

    metadata: MetadataTree = field(default_factory=MetadataTree)
    chunk_metadata: dict[ChunkHandle, ChunkMetadata] = field(default_factory=dict)
    next_ino: int = 1