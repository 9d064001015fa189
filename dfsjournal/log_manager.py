"""Write, rotate, validate and replay the master's operation log."""

from __future__ import annotations

import logging
import os
import secrets
import threading
import time
import zlib
from pathlib import Path
from typing import BinaryIO, Callable, Iterable

from dfsjournal.config import (
    LOG_FILE_EXT,
    LOG_FILE_MAGIC,
    LOG_FILE_VERSION,
    ChecksumMismatchError,
    CorruptedLogError,
    InvalidMagicError,
    LogAlreadyStartedError,
    LogConfig,
    LogError,
    LogNotStartedError,
)
from dfsjournal.framing import iter_frames, read_header, write_frame, write_header
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
    Payload,
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
    decode_entry,
    encode_checkpoint,
    encode_entry,
)

logger = logging.getLogger(__name__)

EntryCallback = Callable[[LogEntry], object]


class LogManager:
    """Buffers operation records and writes them to rotating log files."""

    def __init__(self, config: LogConfig) -> None:
        if config is None:
            raise ValueError("config cannot be None")
        self.config = config
        self.node_id = secrets.token_hex(16)
        self.log_dir = Path(config.log_dir)
        self.checkpoint_dir = Path(config.checkpoint_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)

        self.recovery_callback: EntryCallback | None = None
        self.total_entries = 0
        self.total_bytes = 0
        self.last_checkpoint_sequence = 0

        self._file: BinaryIO | None = None
        self._path: Path | None = None
        self._seq = 0
        self._log_size = 0
        self._buffer: list[LogEntry] = []
        self._last_sync = time.monotonic()

        self._lock = threading.RLock()
        self._buffer_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sequence_number(self) -> int:
        """The sequence number handed to the most recent record."""
        return self._seq

    @property
    def current_log_path(self) -> Path | None:
        return self._path

    def start(self) -> None:
        """Open a log file and start the periodic sync and checkpoint threads."""
        with self._lock:
            if self._running:
                raise LogAlreadyStartedError()
            self._initialize_log_file()
            self._stop_event = threading.Event()
            self._threads = [
                threading.Thread(
                    target=self._periodic,
                    args=(self.config.log_sync_interval, self._sync_tick),
                    name="log-sync",
                    daemon=True,
                ),
                threading.Thread(
                    target=self._periodic,
                    args=(self.config.checkpoint_interval, self._checkpoint_tick),
                    name="log-checkpoint",
                    daemon=True,
                ),
            ]
            for thread in self._threads:
                thread.start()
            self._running = True
            logger.info("Log manager started with node ID: %s", self.node_id)

    def stop(self) -> None:
        """Stop the background threads, flush pending records and close the file."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()
        with self._lock, self._buffer_lock:
            try:
                self._flush_locked()
            except (OSError, LogError) as exc:
                logger.error("Failed to flush buffer during shutdown: %s", exc)
            self._close_file()
        logger.info("Log manager stopped")

    def __enter__(self) -> LogManager:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _periodic(self, interval: float, action: Callable[[], None]) -> None:
        stop = self._stop_event
        while not stop.wait(interval):
            action()

    def _sync_tick(self) -> None:
        try:
            self.force_sync()
        except (OSError, LogError) as exc:
            logger.error("Failed to sync log buffer: %s", exc)

    def _checkpoint_tick(self) -> None:
        try:
            self.create_checkpoint()
        except (OSError, LogError) as exc:
            logger.error("Failed to create checkpoint: %s", exc)

    # ------------------------------------------------------------------
    # Writing

    def write_entry(self, entry: LogEntry) -> None:
        """Stamp an entry with sequence number, time and checksum, and buffer it."""
        if entry is None:
            raise ValueError("log entry cannot be None")
        with self._lock:
            if not self._running:
                raise LogNotStartedError()
        with self._buffer_lock:
            self._seq += 1
            entry.sequence_number = self._seq
            entry.timestamp = time.time_ns()
            entry.checksum = compute_checksum(entry)
            self._buffer.append(entry)
            should_flush = (
                len(self._buffer) >= self.config.log_buffer_size
                or time.monotonic() - self._last_sync >= self.config.log_sync_interval
            )
            if should_flush:
                self._flush_locked()

    def force_sync(self) -> None:
        """Write every buffered record to disk now."""
        with self._buffer_lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        if self._file is None:
            raise LogNotStartedError()
        for entry in self._buffer:
            self._write_entry_to_file(entry)
        self._file.flush()
        os.fsync(self._file.fileno())
        self._buffer.clear()
        self._last_sync = time.monotonic()

    def _write_entry_to_file(self, entry: LogEntry) -> None:
        written = write_frame(self._file, encode_entry(entry))
        self._log_size += written
        self.total_entries += 1
        self.total_bytes += written
        if self._log_size >= self.config.max_log_file_size:
            self._rotate_log_file()

    def _close_file(self) -> None:
        if self._file is not None:
            self._file.flush()
            self._file.close()
            self._file = None

    def _rotate_log_file(self) -> None:
        self._close_file()
        self._create_new_log_file()

    # ------------------------------------------------------------------
    # Log files

    def _initialize_log_file(self) -> None:
        try:
            files = self.log_files()
        except OSError as exc:
            logger.warning("Failed to get existing log files: %s", exc)
        else:
            if files and self._try_reuse(files[-1]):
                return
        self._create_new_log_file()

    def _try_reuse(self, path: Path) -> bool:
        try:
            size = path.stat().st_size
        except OSError as exc:
            logger.warning("Failed to stat log file %s: %s", path, exc)
            return False
        if size >= self.config.max_log_file_size:
            logger.info("Log file %s is full (%d bytes), creating new one", path, size)
            return False
        try:
            last_seq = self._last_sequence(path)
            stream = open(path, "ab")
        except (OSError, LogError) as exc:
            logger.warning("Cannot reuse log file %s: %s", path, exc)
            return False
        self._file = stream
        self._path = path
        self._log_size = size
        self._seq = last_seq
        logger.info(
            "Reusing existing log file: %s (size: %d bytes, last seq: %d)",
            path.name, size, last_seq,
        )
        return True

    @staticmethod
    def _last_sequence(path: Path) -> int:
        with open(path, "rb") as stream:
            read_header(stream)
            return max(
                (decode_entry(frame).sequence_number for frame in iter_frames(stream)),
                default=0,
            )

    def _new_log_path(self) -> Path:
        stamp = int(time.time())
        path = self.log_dir / f"master_{stamp}{LOG_FILE_EXT}"
        suffix = 0
        while path.exists():
            suffix += 1
            path = self.log_dir / f"master_{stamp}_{suffix:03d}{LOG_FILE_EXT}"
        return path

    def _create_new_log_file(self) -> None:
        path = self._new_log_path()
        try:
            stream = open(path, "xb")
        except OSError as exc:
            raise LogError(f"failed to create log file: {exc}") from exc
        self._file = stream
        self._path = path
        header = LogFileHeader(
            magic=LOG_FILE_MAGIC,
            version=LOG_FILE_VERSION,
            created_at=time.time_ns(),
            node_id=self.node_id,
            start_sequence=self._seq,
        )
        self._log_size = write_header(stream, header)
        logger.info("Created new log file: %s", path)

    def log_files(self) -> list[Path]:
        """All log files in the log directory, sorted by path."""
        return sorted(
            (p for p in self.log_dir.iterdir() if p.name.endswith(LOG_FILE_EXT)),
            key=str,
        )

    def clean_old_logs(self) -> list[Path]:
        """Delete log files older than the retention period; return those removed."""
        removed = []
        with self._lock:
            cutoff = time.time() - self.config.log_retention_period
            for path in self.log_files():
                try:
                    mtime = path.stat().st_mtime
                except OSError as exc:
                    logger.warning("Failed to get file info for %s: %s", path, exc)
                    continue
                if mtime < cutoff:
                    try:
                        path.unlink()
                    except OSError as exc:
                        logger.warning("Failed to remove old log file %s: %s", path, exc)
                    else:
                        logger.info("Removed old log file: %s", path)
                        removed.append(path)
        return removed

    # ------------------------------------------------------------------
    # Checkpoints

    def create_checkpoint(self) -> Path:
        """Flush, then write a checkpoint describing the current log position."""
        with self._lock, self._buffer_lock:
            self._flush_locked()
            if self._path is None:
                raise LogNotStartedError()
            now = time.time_ns()
            path = self.checkpoint_dir / f"checkpoint_{now // 1_000_000_000}.pb"
            metadata = CheckpointMetadata(
                timestamp=now,
                sequence_number=self._seq,
                log_file_path=str(self._path),
                log_file_offset=self._log_size,
                checksum="",
                metadata={
                    "node_id": self.node_id,
                    "total_entries": str(self.total_entries),
                    "total_bytes": str(self.total_bytes),
                },
            )
            data = encode_checkpoint(metadata)
            path.write_bytes(data)
            metadata.checksum = format(zlib.crc32(data) & 0xFFFFFFFF, "x")
            path.write_bytes(encode_checkpoint(metadata))
            self.last_checkpoint_sequence = self._seq
            logger.info("Created checkpoint at sequence %d: %s", self._seq, path)
            return path

    def set_recovery_callback(self, callback: EntryCallback | None) -> None:
        self.recovery_callback = callback

    # ------------------------------------------------------------------
    # Reading

    def validate_log_file(self, path: Path | str) -> int:
        """Check a log file's header and every record; return the record count."""
        path = Path(path)
        with open(path, "rb") as stream:
            if os.fstat(stream.fileno()).st_size == 0:
                raise CorruptedLogError("log file is empty")
            read_header(stream)
            count = 0
            for frame in iter_frames(stream):
                try:
                    entry = decode_entry(frame)
                except CorruptedLogError as exc:
                    raise CorruptedLogError(
                        f"invalid log entry at position {count}: {exc}"
                    ) from exc
                if entry.checksum != compute_checksum(entry):
                    raise ChecksumMismatchError(f"checksum mismatch at entry {count}")
                count += 1
        logger.info("Log file %s validated successfully: %d entries", path, count)
        return count

    def replay_from_sequence(self, start_seq: int, callback: EntryCallback) -> int:
        """Pass every record after ``start_seq`` to ``callback``; return how many succeeded."""
        if callback is None:
            raise ValueError("callback cannot be None")
        files = self.log_files()
        if not files:
            logger.info("No log files found for replay")
            return 0
        replayed = 0
        for path in files:
            try:
                count = self._replay_file(path, start_seq, callback)
            except (OSError, LogError) as exc:
                logger.warning("Failed to replay log file %s: %s", path, exc)
                continue
            if count:
                logger.info("Replayed %d entries from log file: %s", count, path.name)
            replayed += count
        logger.info("Replay completed: %d entries from %d log files", replayed, len(files))
        return replayed

    def _replay_file(self, path: Path, min_seq: int, callback: EntryCallback) -> int:
        with open(path, "rb") as stream:
            if os.fstat(stream.fileno()).st_size == 0:
                return 0
            try:
                read_header(stream)
            except InvalidMagicError:
                logger.warning("Invalid magic in log file %s, skipping", path)
                return 0
            replayed = 0
            for frame in iter_frames(stream):
                entry = decode_entry(frame)
                if entry.sequence_number <= min_seq:
                    continue
                try:
                    callback(entry)
                except Exception as exc:  # a failing record is skipped, not fatal
                    logger.warning("Failed to replay entry %d: %s", entry.sequence_number, exc)
                    continue
                replayed += 1
            return replayed

    # ------------------------------------------------------------------
    # Typed records

    def _record(self, kind: LogEntryType, operation_id: str, payload: Payload) -> None:
        self.write_entry(LogEntry(type=kind, operation_id=operation_id, data=payload))

    def log_create_inode(self, inode_id: int, parent_id: int, name: str,
                         attrs: FileAttributes | None, is_directory: bool, target: str) -> None:
        self._record(
            LogEntryType.CREATE_INODE,
            f"create_inode_{inode_id}_{parent_id}_{name}",
            CreateInode(inode_id=inode_id, parent_id=parent_id, name=name,
                        attributes=attrs, is_directory=is_directory, target=target),
        )

    def log_delete_inode(self, inode_id: int, parent_id: int, name: str) -> None:
        self._record(
            LogEntryType.DELETE_INODE,
            f"delete_inode_{inode_id}_{parent_id}_{name}",
            DeleteInode(inode_id=inode_id, parent_id=parent_id, name=name),
        )

    def log_update_inode(self, inode_id: int, attrs: FileAttributes | None,
                         field_mask: Iterable[str]) -> None:
        self._record(
            LogEntryType.UPDATE_INODE,
            f"update_inode_{inode_id}_{time.time_ns()}",
            UpdateInode(inode_id=inode_id, attributes=attrs, field_mask=list(field_mask)),
        )

    def log_create_chunk(self, chunk_handle: str, inode_id: int, chunk_index: int, version: int,
                         locations: Iterable[ChunkLocation], size: int, checksum: str) -> None:
        self._record(
            LogEntryType.CREATE_CHUNK,
            f"create_chunk_{chunk_handle}_{inode_id}_{chunk_index}",
            CreateChunk(chunk_handle=chunk_handle, inode_id=inode_id, chunk_index=chunk_index,
                        version=version, locations=list(locations), size=size,
                        checksum=checksum),
        )

    def log_delete_chunk(self, chunk_handle: str, inode_id: int, chunk_index: int) -> None:
        self._record(
            LogEntryType.DELETE_CHUNK,
            f"delete_chunk_{chunk_handle}_{inode_id}_{chunk_index}",
            DeleteChunk(chunk_handle=chunk_handle, inode_id=inode_id, chunk_index=chunk_index),
        )

    def log_update_chunk(self, chunk_handle: str, version: int,
                         locations: Iterable[ChunkLocation], size: int, checksum: str) -> None:
        self._record(
            LogEntryType.UPDATE_CHUNK,
            f"update_chunk_{chunk_handle}_{time.time_ns()}",
            UpdateChunk(chunk_handle=chunk_handle, version=version,
                        locations=list(locations), size=size, checksum=checksum),
        )

    def log_lease_grant(self, chunk_handle: str, primary_server: str,
                        replica_servers: Iterable[str], lease_expiry: int, version: int) -> None:
        self._record(
            LogEntryType.LEASE_GRANT,
            f"lease_grant_{chunk_handle}_{primary_server}",
            LeaseGrant(chunk_handle=chunk_handle, primary_server=primary_server,
                       replica_servers=list(replica_servers), lease_expiry=lease_expiry,
                       version=version),
        )

    def log_lease_revoke(self, chunk_handle: str, primary_server: str, version: int) -> None:
        self._record(
            LogEntryType.LEASE_REVOKE,
            f"lease_revoke_{chunk_handle}_{primary_server}",
            LeaseRevoke(chunk_handle=chunk_handle, primary_server=primary_server,
                        version=version),
        )

    def log_mkdir(self, parent_id: int, inode_id: int, name: str,
                  attrs: FileAttributes | None) -> None:
        self._record(
            LogEntryType.MKDIR,
            f"mkdir_{parent_id}_{inode_id}_{name}",
            Mkdir(parent_id=parent_id, name=name, inode_id=inode_id, attributes=attrs),
        )

    def log_rmdir(self, parent_id: int, inode_id: int, name: str) -> None:
        self._record(
            LogEntryType.RMDIR,
            f"rmdir_{parent_id}_{inode_id}_{name}",
            Rmdir(parent_id=parent_id, name=name, inode_id=inode_id),
        )

    def log_rename(self, old_parent_id: int, new_parent_id: int, inode_id: int,
                   old_name: str, new_name: str) -> None:
        self._record(
            LogEntryType.RENAME,
            f"rename_{old_parent_id}_{old_name}_{new_parent_id}_{new_name}",
            Rename(old_parent_id=old_parent_id, old_name=old_name,
                   new_parent_id=new_parent_id, new_name=new_name, inode_id=inode_id),
        )

    def log_symlink(self, parent_id: int, inode_id: int, name: str, target: str,
                    attrs: FileAttributes | None) -> None:
        self._record(
            LogEntryType.SYMLINK,
            f"symlink_{parent_id}_{inode_id}_{name}",
            Symlink(parent_id=parent_id, name=name, target=target, inode_id=inode_id,
                    attributes=attrs),
        )

    def log_unlink(self, parent_id: int, inode_id: int, name: str) -> None:
        self._record(
            LogEntryType.UNLINK,
            f"unlink_{parent_id}_{inode_id}_{name}",
            Unlink(parent_id=parent_id, name=name, inode_id=inode_id),
        )

    def log_setattr(self, inode_id: int, attrs: FileAttributes | None,
                    field_mask: Iterable[str]) -> None:
        self._record(
            LogEntryType.SETATTR,
            f"setattr_{inode_id}_{time.time_ns()}",
            Setattr(inode_id=inode_id, attributes=attrs, field_mask=list(field_mask)),
        )

    def log_setxattr(self, inode_id: int, name: str, value: bytes, flags: int) -> None:
        self._record(
            LogEntryType.SETXATTR,
            f"setxattr_{inode_id}_{name}_{time.time_ns()}",
            Setxattr(inode_id=inode_id, name=name, value=bytes(value), flags=flags),
        )

    def log_removexattr(self, inode_id: int, name: str) -> None:
        self._record(
            LogEntryType.REMOVEXATTR,
            f"removexattr_{inode_id}_{name}_{time.time_ns()}",
            Removexattr(inode_id=inode_id, name=name),
        )