from dataclasses import replace

import pytest

from dfsjournal.config import CorruptedLogError
from dfsjournal.records import (
    CheckpointMetadata,
    ChunkLocation,
    CreateChunk,
    CreateInode,
    DeleteChunk,
    DeleteInode,
    FileAttributes,
    LeaseGrant,
    LeaseRevoke,
    LogEntry,
    LogEntryType,
    LogFileHeader,
    Mkdir,
    Removexattr,
    Rename,
    Rmdir,
    Setattr,
    Setxattr,
    Symlink,
    Unlink,
    UpdateChunk,
    UpdateInode,
    compute_checksum,
    decode_checkpoint,
    decode_entry,
    decode_header,
    encode_checkpoint,
    encode_entry,
    encode_header,
)

ATTRS = FileAttributes(mode=0o644, uid=1000, gid=1000, size=4096, mtime=17, nlink=1)
LOCS = [ChunkLocation(address="localhost:8081"), ChunkLocation(address="localhost:8082")]

PAYLOADS = [
    (LogEntryType.CREATE_INODE, CreateInode(5, 1, "file.txt", ATTRS, False, "")),
    (LogEntryType.DELETE_INODE, DeleteInode(5, 1, "file.txt")),
    (LogEntryType.UPDATE_INODE, UpdateInode(5, ATTRS, ["mode", "size"])),
    (LogEntryType.CREATE_CHUNK, CreateChunk("h-1", 5, 0, 1, LOCS, 1024, "abc")),
    (LogEntryType.DELETE_CHUNK, DeleteChunk("h-1", 5, 0)),
    (LogEntryType.UPDATE_CHUNK, UpdateChunk("h-1", 2, LOCS, 2048, "def")),
    (LogEntryType.LEASE_GRANT, LeaseGrant("h-1", "localhost:8081", ["localhost:8082"], 99, 2)),
    (LogEntryType.LEASE_REVOKE, LeaseRevoke("h-1", "localhost:8081", 2)),
    (LogEntryType.MKDIR, Mkdir(1, "docs", 6, ATTRS)),
    (LogEntryType.RMDIR, Rmdir(1, "docs", 6)),
    (LogEntryType.RENAME, Rename(1, "a", 6, "b", 7)),
    (LogEntryType.SYMLINK, Symlink(1, "link", "/target", 8, ATTRS)),
    (LogEntryType.UNLINK, Unlink(1, "link", 8)),
    (LogEntryType.SETATTR, Setattr(5, ATTRS, ["uid"])),
    (LogEntryType.SETXATTR, Setxattr(5, "user.tag", b"value", 0)),
    (LogEntryType.REMOVEXATTR, Removexattr(5, "user.tag")),
]


def _entry(entry_type, payload, checksum=0):
    return LogEntry(
        sequence_number=3,
        timestamp=123456789,
        type=entry_type,
        operation_id="op-1",
        checksum=checksum,
        data=payload,
    )


@pytest.mark.parametrize("entry_type, payload", PAYLOADS)
def test_entry_round_trip(entry_type, payload):
    entry = _entry(entry_type, payload)
    entry = replace(entry, checksum=compute_checksum(entry))
    assert decode_entry(encode_entry(entry)) == entry


@pytest.mark.parametrize("entry_type, payload", PAYLOADS)
def test_encoding_is_stable(entry_type, payload):
    encoded = encode_entry(_entry(entry_type, payload))
    assert encode_entry(decode_entry(encoded)) == encoded


def test_entry_without_payload_round_trips():
    entry = LogEntry(sequence_number=1, operation_id="noop")
    assert decode_entry(encode_entry(entry)) == entry


def test_checksum_ignores_stored_checksum():
    entry = _entry(LogEntryType.UNLINK, Unlink(1, "x", 2))
    assert compute_checksum(entry) == compute_checksum(replace(entry, checksum=77))


def test_checksum_detects_payload_change():
    entry = _entry(LogEntryType.UNLINK, Unlink(1, "x", 2))
    changed = replace(entry, data=Unlink(1, "y", 2))
    assert compute_checksum(entry) != compute_checksum(changed)
    assert compute_checksum(entry) != compute_checksum(replace(entry, sequence_number=4))


def test_checksum_fits_32_bits():
    value = compute_checksum(_entry(LogEntryType.RMDIR, Rmdir(1, "d", 2)))
    assert 0 <= value < 2**32


def test_binary_xattr_value_preserved():
    raw = bytes(range(256))
    entry = _entry(LogEntryType.SETXATTR, Setxattr(9, "user.blob", raw, 1))
    decoded = decode_entry(encode_entry(entry))
    assert decoded.data.value == raw


def test_unsupported_payload_rejected():
    with pytest.raises(TypeError):
        encode_entry(LogEntry(data=FileAttributes()))


@pytest.mark.parametrize(
    "data",
    [
        b"\xff\xfe",
        b"[]",
        b"not json",
        b'{"type": 999}',
        b'{"type": 1, "data": {"kind": "explode", "fields": {}}}',
        b'{"type": 1, "sequence_number": "three"}',
        b'{"type": 15, "data": {"kind": "setxattr", "fields": {"value": "!!"}}}',
    ],
)
def test_corrupt_entries_rejected(data):
    with pytest.raises(CorruptedLogError):
        decode_entry(data)


def test_header_round_trip():
    header = LogFileHeader(magic=42, version=1, created_at=10, node_id="ab12", start_sequence=5)
    assert decode_header(encode_header(header)) == header


def test_header_garbage_rejected():
    with pytest.raises(CorruptedLogError):
        decode_header(b"\x00\x01")


def test_checkpoint_round_trip():
    metadata = CheckpointMetadata(
        timestamp=1,
        sequence_number=12,
        log_file_path="logs/master_1.log",
        log_file_offset=300,
        checksum="deadbeef",
        metadata={"node_id": "ab12", "total_entries": "12"},
    )
    assert decode_checkpoint(encode_checkpoint(metadata)) == metadata


def test_checkpoint_bad_metadata_rejected():
    with pytest.raises(CorruptedLogError):
        decode_checkpoint(b'{"metadata": [1, 2]}')