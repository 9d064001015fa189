"""Operation-log records and their byte encoding."""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum, IntEnum
from typing import Any, Callable, Union

from dfsjournal.config import CorruptedLogError


class LogEntryType(IntEnum):
    UNSPECIFIED = 0
    CREATE_INODE = 1
    DELETE_INODE = 2
    UPDATE_INODE = 3
    CREATE_CHUNK = 4
    DELETE_CHUNK = 5
    UPDATE_CHUNK = 6
    LEASE_GRANT = 7
    LEASE_REVOKE = 8
    MKDIR = 9
    RMDIR = 10
    RENAME = 11
    SYMLINK = 12
    UNLINK = 13
    SETATTR = 14
    SETXATTR = 15
    REMOVEXATTR = 16


@dataclass
class FileAttributes:
    mode: int = 0
    uid: int = 0
    gid: int = 0
    size: int = 0
    atime: int = 0
    mtime: int = 0
    ctime: int = 0
    nlink: int = 0


@dataclass
class ChunkLocation:
    address: str = ""
    server_id: str = ""


@dataclass
class CreateInode:
    inode_id: int = 0
    parent_id: int = 0
    name: str = ""
    attributes: FileAttributes | None = None
    is_directory: bool = False
    target: str = ""


@dataclass
class DeleteInode:
    inode_id: int = 0
    parent_id: int = 0
    name: str = ""


@dataclass
class UpdateInode:
    inode_id: int = 0
    attributes: FileAttributes | None = None
    field_mask: list[str] = field(default_factory=list)


@dataclass
class CreateChunk:
    chunk_handle: str = ""
    inode_id: int = 0
    chunk_index: int = 0
    version: int = 0
    locations: list[ChunkLocation] = field(default_factory=list)
    size: int = 0
    checksum: str = ""


@dataclass
class DeleteChunk:
    chunk_handle: str = ""
    inode_id: int = 0
    chunk_index: int = 0


@dataclass
class UpdateChunk:
    chunk_handle: str = ""
    version: int = 0
    locations: list[ChunkLocation] = field(default_factory=list)
    size: int = 0
    checksum: str = ""


@dataclass
class LeaseGrant:
    chunk_handle: str = ""
    primary_server: str = ""
    replica_servers: list[str] = field(default_factory=list)
    lease_expiry: int = 0
    version: int = 0


@dataclass
class LeaseRevoke:
    chunk_handle: str = ""
    primary_server: str = ""
    version: int = 0


@dataclass
class Mkdir:
    parent_id: int = 0
    name: str = ""
    inode_id: int = 0
    attributes: FileAttributes | None = None


@dataclass
class Rmdir:
    parent_id: int = 0
    name: str = ""
    inode_id: int = 0


@dataclass
class Rename:
    old_parent_id: int = 0
    old_name: str = ""
    new_parent_id: int = 0
    new_name: str = ""
    inode_id: int = 0


@dataclass
class Symlink:
    parent_id: int = 0
    name: str = ""
    target: str = ""
    inode_id: int = 0
    attributes: FileAttributes | None = None


@dataclass
class Unlink:
    parent_id: int = 0
    name: str = ""
    inode_id: int = 0


@dataclass
class Setattr:
    inode_id: int = 0
    attributes: FileAttributes | None = None
    field_mask: list[str] = field(default_factory=list)


@dataclass
class Setxattr:
    inode_id: int = 0
    name: str = ""
    value: bytes = b""
    flags: int = 0


@dataclass
class Removexattr:
    inode_id: int = 0
    name: str = ""


Payload = Union[
    CreateInode, DeleteInode, UpdateInode, CreateChunk, DeleteChunk, UpdateChunk,
    LeaseGrant, LeaseRevoke, Mkdir, Rmdir, Rename, Symlink, Unlink, Setattr,
    Setxattr, Removexattr,
]

_PAYLOAD_KINDS: dict[str, type] = {
    "create_inode": CreateInode,
    "delete_inode": DeleteInode,
    "update_inode": UpdateInode,
    "create_chunk": CreateChunk,
    "delete_chunk": DeleteChunk,
    "update_chunk": UpdateChunk,
    "lease_grant": LeaseGrant,
    "lease_revoke": LeaseRevoke,
    "mkdir": Mkdir,
    "rmdir": Rmdir,
    "rename": Rename,
    "symlink": Symlink,
    "unlink": Unlink,
    "setattr": Setattr,
    "setxattr": Setxattr,
    "removexattr": Removexattr,
}
_KIND_OF = {cls: kind for kind, cls in _PAYLOAD_KINDS.items()}


@dataclass
class LogEntry:
    """One operation record; ``data`` holds the operation's payload."""

    sequence_number: int = 0
    timestamp: int = 0
    type: LogEntryType = LogEntryType.UNSPECIFIED
    operation_id: str = ""
    checksum: int = 0
    data: Payload | None = None


@dataclass
class LogFileHeader:
    magic: int = 0
    version: int = 0
    created_at: int = 0
    node_id: str = ""
    start_sequence: int = 0


@dataclass
class CheckpointMetadata:
    timestamp: int = 0
    sequence_number: int = 0
    log_file_path: str = ""
    log_file_offset: int = 0
    checksum: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


def _to_plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _to_plain(item) for key, item in value.items()}
    return value


def _as_list(raw: Any) -> list:
    if not isinstance(raw, list):
        raise CorruptedLogError("expected a list in log record")
    return raw


def _decode_bytes(raw: Any) -> bytes:
    if not isinstance(raw, str):
        raise CorruptedLogError("expected encoded bytes in log record")
    try:
        return base64.b64decode(raw, validate=True)
    except binascii.Error as exc:
        raise CorruptedLogError(f"invalid bytes in log record: {exc}") from exc


_NESTED: dict[str, Callable[[Any], Any]] = {
    "attributes": lambda raw: None if raw is None else _build(FileAttributes, raw),
    "locations": lambda raw: [_build(ChunkLocation, item) for item in _as_list(raw)],
    "value": _decode_bytes,
}


def _build(cls: type, raw: Any) -> Any:
    if not isinstance(raw, dict):
        raise CorruptedLogError(f"expected an object for {cls.__name__}")
    kwargs = {}
    for f in fields(cls):
        if f.name in raw:
            convert = _NESTED.get(f.name)
            kwargs[f.name] = convert(raw[f.name]) if convert else raw[f.name]
    return cls(**kwargs)


def _dumps(plain: Any) -> bytes:
    return json.dumps(plain, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _loads(data: bytes) -> dict:
    try:
        raw = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise CorruptedLogError(f"undecodable log record: {exc}") from exc
    if not isinstance(raw, dict):
        raise CorruptedLogError("log record is not an object")
    return raw


def _int_field(raw: dict, name: str) -> int:
    value = raw.get(name, 0)
    if not isinstance(value, int) or isinstance(value, bool):
        raise CorruptedLogError(f"field {name!r} is not an integer")
    return value


def encode_entry(entry: LogEntry) -> bytes:
    """Serialize a log entry, including its stored checksum."""
    if entry.data is None:
        data = None
    else:
        kind = _KIND_OF.get(type(entry.data))
        if kind is None:
            raise TypeError(f"unsupported log payload: {type(entry.data).__name__}")
        data = {"kind": kind, "fields": _to_plain(entry.data)}
    return _dumps(
        {
            "sequence_number": entry.sequence_number,
            "timestamp": entry.timestamp,
            "type": int(entry.type),
            "operation_id": entry.operation_id,
            "checksum": entry.checksum,
            "data": data,
        }
    )


def decode_entry(data: bytes) -> LogEntry:
    """Parse bytes produced by :func:`encode_entry`."""
    raw = _loads(data)
    try:
        entry_type = LogEntryType(_int_field(raw, "type"))
    except ValueError as exc:
        raise CorruptedLogError(f"unknown log entry type: {raw.get('type')}") from exc
    operation_id = raw.get("operation_id", "")
    if not isinstance(operation_id, str):
        raise CorruptedLogError("field 'operation_id' is not a string")

    payload = None
    raw_data = raw.get("data")
    if raw_data is not None:
        if not isinstance(raw_data, dict):
            raise CorruptedLogError("log payload is not an object")
        cls = _PAYLOAD_KINDS.get(raw_data.get("kind"))
        if cls is None:
            raise CorruptedLogError(f"unknown log payload kind: {raw_data.get('kind')}")
        payload = _build(cls, raw_data.get("fields", {}))

    return LogEntry(
        sequence_number=_int_field(raw, "sequence_number"),
        timestamp=_int_field(raw, "timestamp"),
        type=entry_type,
        operation_id=operation_id,
        checksum=_int_field(raw, "checksum"),
        data=payload,
    )


def compute_checksum(entry: LogEntry) -> int:
    """CRC-32 of the entry's encoding with its checksum field cleared."""
    return zlib.crc32(encode_entry(replace(entry, checksum=0))) & 0xFFFFFFFF


def encode_header(header: LogFileHeader) -> bytes:
    return _dumps(_to_plain(header))


def decode_header(data: bytes) -> LogFileHeader:
    return _build(LogFileHeader, _loads(data))


def encode_checkpoint(metadata: CheckpointMetadata) -> bytes:
    return _dumps(_to_plain(metadata))


def decode_checkpoint(data: bytes) -> CheckpointMetadata:
    checkpoint = _build(CheckpointMetadata, _loads(data))
    if not isinstance(checkpoint.metadata, dict):
        raise CorruptedLogError("checkpoint metadata is not an object")
    return checkpoint