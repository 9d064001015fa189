import uuid

import pytest

from dfsjournal.state import (
    ChunkMetadata,
    Inode,
    MasterState,
    MetadataKey,
    MetadataTree,
    parse_chunk_handle,
)


def test_parse_chunk_handle_round_trip():
    handle = uuid.uuid4()
    assert parse_chunk_handle(str(handle)) == handle


@pytest.mark.parametrize("text", ["", "not-a-handle", "1234"])
def test_parse_chunk_handle_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_chunk_handle(text)


def test_make_attr_sets_fields():
    inode = Inode(ino=7)
    inode.make_attr(0o100644, 1000, 100)
    assert (inode.mode, inode.uid, inode.gid) == (0o100644, 1000, 100)


def test_tree_iterates_in_key_order():
    tree = MetadataTree()
    tree.insert(MetadataKey(2, "a"), Inode(ino=3))
    tree.insert(MetadataKey(1, "z"), Inode(ino=2))
    tree.insert(MetadataKey(1, "b"), Inode(ino=4))
    keys = [key for key, _ in tree]
    assert keys == [MetadataKey(1, "b"), MetadataKey(1, "z"), MetadataKey(2, "a")]
    assert len(tree) == 3


def test_insert_replaces_and_returns_previous():
    tree = MetadataTree()
    first, second = Inode(ino=5), Inode(ino=6)
    assert tree.insert(MetadataKey(1, "f"), first) is None
    assert tree.insert(MetadataKey(1, "f"), second) is first
    assert tree.get(MetadataKey(1, "f")) is second
    assert len(tree) == 1


def test_delete_returns_inode_or_none():
    tree = MetadataTree()
    inode = Inode(ino=5)
    tree.insert(MetadataKey(1, "f"), inode)
    assert tree.delete(MetadataKey(1, "f")) is inode
    assert tree.delete(MetadataKey(1, "f")) is None
    assert tree.get(MetadataKey(1, "f")) is None
    assert len(tree) == 0


def test_find_by_ino_returns_first_in_key_order():
    tree = MetadataTree()
    shared = Inode(ino=9)
    tree.insert(MetadataKey(3, "later"), shared)
    tree.insert(MetadataKey(1, "earlier"), shared)
    assert tree.find_by_ino(9) == (MetadataKey(1, "earlier"), shared)
    assert tree.find_by_ino(42) is None


def test_master_state_starts_empty():
    state = MasterState()
    assert len(state.metadata) == 0
    assert state.chunk_metadata == {}
    assert state.next_ino == 1


def test_chunk_metadata_defaults_are_independent():
    a, b = ChunkMetadata(), ChunkMetadata()
    a.locations.append("host:1")
    assert b.locations == []