"""Rebuild master state by replaying operation-log records."""

from __future__ import annotations

import logging
import stat
from typing import Any, Callable, Protocol

from dfsjournal.config import LogError
from dfsjournal.records import (
    ChunkLocation,
    CreateChunk,
    CreateInode,
    DeleteChunk,
    DeleteInode,
    FileAttributes,
    LogEntry,
    LogEntryType,
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
)
from dfsjournal.state import (
    ChunkMetadata,
    Inode,
    MasterState,
    MetadataKey,
    parse_chunk_handle,
)

logger = logging.getLogger(__name__)

_U16 = 0xFFFF
_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF


class _ReplaySource(Protocol):
    def set_recovery_callback(self, callback: Callable[[LogEntry], Any] | None) -> None: ...

    def replay_from_sequence(self, start_seq: int, callback: Callable[[LogEntry], Any]) -> int: ...


def _addresses(locations: list[ChunkLocation]) -> list[str]:
    return [location.address for location in locations]


def _require_attributes(attrs: FileAttributes | None, what: str) -> FileAttributes:
    if attrs is None:
        raise ValueError(f"{what} entry has no attributes")
    return attrs


class RecoveryManager:
    """Applies replayed log records to a :class:`MasterState`."""

    def __init__(self, log_manager: _ReplaySource, master: MasterState) -> None:
        self.log_manager = log_manager
        self.master = master
        self._handlers: dict[LogEntryType, tuple[type, Callable[[Any], None]]] = {
            LogEntryType.CREATE_INODE: (CreateInode, self._create_inode),
            LogEntryType.DELETE_INODE: (DeleteInode, self._delete_inode),
            LogEntryType.UPDATE_INODE: (UpdateInode, self._update_inode),
            LogEntryType.CREATE_CHUNK: (CreateChunk, self._create_chunk),
            LogEntryType.DELETE_CHUNK: (DeleteChunk, self._delete_chunk),
            LogEntryType.UPDATE_CHUNK: (UpdateChunk, self._update_chunk),
            LogEntryType.MKDIR: (Mkdir, self._mkdir),
            LogEntryType.RMDIR: (Rmdir, self._rmdir),
            LogEntryType.RENAME: (Rename, self._rename),
            LogEntryType.SYMLINK: (Symlink, self._symlink),
            LogEntryType.UNLINK: (Unlink, self._unlink),
            LogEntryType.SETATTR: (Setattr, self._setattr),
            LogEntryType.SETXATTR: (Setxattr, self._setxattr),
            LogEntryType.REMOVEXATTR: (Removexattr, self._removexattr),
        }

    def recover(self) -> int:
        """Replay every log record from the beginning; return how many were applied."""
        logger.info("Starting recovery process...")
        self.log_manager.set_recovery_callback(self.apply)
        try:
            count = self.log_manager.replay_from_sequence(0, self.apply)
        except OSError as exc:
            raise LogError(f"failed to replay logs: {exc}") from exc
        logger.info("Recovery completed successfully")
        return count

    def apply(self, entry: LogEntry) -> None:
        """Apply a single record to the master state."""
        handler = self._handlers.get(entry.type)
        if handler is None:
            logger.warning("Unknown log entry type: %s", entry.type)
            return
        payload_type, action = handler
        if not isinstance(entry.data, payload_type):
            raise ValueError(f"{entry.type.name.lower()} entry is nil")
        action(entry.data)

    # ------------------------------------------------------------------
    # Inodes

    def _create_inode(self, entry: CreateInode) -> None:
        attrs = _require_attributes(entry.attributes, "create inode")
        inode = Inode(
            ino=entry.inode_id,
            size=attrs.size & _U64,
            mtime=attrs.mtime & _U64,
            nlink=attrs.nlink & _U16,
        )
        if entry.is_directory:
            kind = stat.S_IFDIR
        elif entry.target:
            kind = stat.S_IFLNK
        else:
            kind = stat.S_IFREG
        inode.make_attr(kind | attrs.mode, attrs.uid, attrs.gid)
        self.master.metadata.insert(MetadataKey(entry.parent_id, entry.name), inode)
        if entry.inode_id >= self.master.next_ino:
            self.master.next_ino = entry.inode_id + 1

    def _delete_inode(self, entry: DeleteInode) -> None:
        self.master.metadata.delete(MetadataKey(entry.parent_id, entry.name))

    def _update_inode(self, entry: UpdateInode) -> None:
        found = self.master.metadata.find_by_ino(entry.inode_id)
        if found is None:
            raise KeyError(f"inode {entry.inode_id} not found for update")
        _, inode = found
        for name in entry.field_mask:
            if name not in ("mode", "uid", "gid", "size", "mtime"):
                continue
            attrs = _require_attributes(entry.attributes, "update inode")
            if name == "mode":
                inode.make_attr(attrs.mode, inode.uid, inode.gid)
            elif name == "uid":
                inode.make_attr(inode.mode, attrs.uid, inode.gid)
            elif name == "gid":
                inode.make_attr(inode.mode, inode.uid, attrs.gid)
            elif name == "size":
                inode.size = attrs.size & _U64
            else:
                inode.mtime = attrs.mtime & _U64

    def _mkdir(self, entry: Mkdir) -> None:
        self._create_inode(CreateInode(
            inode_id=entry.inode_id, parent_id=entry.parent_id, name=entry.name,
            attributes=entry.attributes, is_directory=True,
        ))

    def _rmdir(self, entry: Rmdir) -> None:
        self._delete_inode(DeleteInode(
            inode_id=entry.inode_id, parent_id=entry.parent_id, name=entry.name,
        ))

    def _rename(self, entry: Rename) -> None:
        old_key = MetadataKey(entry.old_parent_id, entry.old_name)
        inode = self.master.metadata.delete(old_key)
        if inode is not None:
            self.master.metadata.insert(MetadataKey(entry.new_parent_id, entry.new_name), inode)

    def _symlink(self, entry: Symlink) -> None:
        self._create_inode(CreateInode(
            inode_id=entry.inode_id, parent_id=entry.parent_id, name=entry.name,
            attributes=entry.attributes, is_directory=False, target=entry.target,
        ))

    def _unlink(self, entry: Unlink) -> None:
        self._delete_inode(DeleteInode(
            inode_id=entry.inode_id, parent_id=entry.parent_id, name=entry.name,
        ))

    def _setattr(self, entry: Setattr) -> None:
        self._update_inode(UpdateInode(
            inode_id=entry.inode_id, attributes=entry.attributes,
            field_mask=list(entry.field_mask),
        ))

    def _setxattr(self, entry: Setxattr) -> None:
        found = self.master.metadata.find_by_ino(entry.inode_id)
        if found is not None:
            found[1].xattr[entry.name] = bytes(entry.value)

    def _removexattr(self, entry: Removexattr) -> None:
        found = self.master.metadata.find_by_ino(entry.inode_id)
        if found is not None:
            found[1].xattr.pop(entry.name, None)

    # ------------------------------------------------------------------
    # Chunks

    def _create_chunk(self, entry: CreateChunk) -> None:
        handle = parse_chunk_handle(entry.chunk_handle)
        self.master.chunk_metadata[handle] = ChunkMetadata(
            version=entry.version & _U16,
            size=entry.size & _U32,
            locations=_addresses(entry.locations),
        )
        found = self.master.metadata.find_by_ino(entry.inode_id)
        if found is not None:
            found[1].chunks[entry.chunk_index] = handle

    def _delete_chunk(self, entry: DeleteChunk) -> None:
        handle = parse_chunk_handle(entry.chunk_handle)
        self.master.chunk_metadata.pop(handle, None)
        found = self.master.metadata.find_by_ino(entry.inode_id)
        if found is not None:
            found[1].chunks.pop(entry.chunk_index, None)

    def _update_chunk(self, entry: UpdateChunk) -> None:
        handle = parse_chunk_handle(entry.chunk_handle)
        chunk = self.master.chunk_metadata.get(handle)
        if chunk is None:
            raise KeyError(f"chunk {entry.chunk_handle} not found for update")
        chunk.version = entry.version & _U16
        chunk.size = entry.size & _U32
        chunk.locations = _addresses(entry.locations)