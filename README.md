# dfsjournal

`dfsjournal` is the metadata journal for the master node of a chunk-based distributed file system. It does four jobs:

- It appends every namespace and chunk operation to log files as length-prefixed records. Each frame starts with a 4-byte little-endian size. Each entry carries a sequence number, a nanosecond timestamp and a CRC-32 checksum.
- It buffers entries and writes them to disk, with an fsync, when the buffer reaches `log_buffer_size` or when `log_sync_interval` has passed. A background thread also flushes on that interval, and a second thread writes a checkpoint every `checkpoint_interval`.
- It rotates to a new log file once the current file reaches `max_log_file_size`. At start-up it reuses the newest log file, provided that file is below the limit and reads back cleanly.
- It writes checkpoint metadata files, validates log files, and replays entries to rebuild the master's in-memory state.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install .[test]
```

## Configuration

`dfsjournal.config.LogConfig` is a dataclass. Intervals and periods are given in seconds and sizes in bytes:

| field | default |
|---|---|
| `log_dir` | `"logs"` |
| `checkpoint_dir` | `"checkpoints"` |
| `log_buffer_size` | `100` |
| `log_sync_interval` | `1.0` |
| `checkpoint_interval` | `300.0` |
| `max_log_file_size` | 64 MiB |
| `log_retention_period` | 7 days |

The directories are converted to `Path`. A negative buffer size or retention period raises `ValueError`, and so does a non-positive interval or size limit. `LogManager(config)` creates both directories.

## Writing the journal

```python
from dfsjournal.config import LogConfig
from dfsjournal.log_manager import LogManager
from dfsjournal.records import FileAttributes

config = LogConfig(log_dir="logs", checkpoint_dir="checkpoints")

with LogManager(config) as journal:
    attrs = FileAttributes(mode=0o755, uid=1000, gid=1000, nlink=2)
    journal.log_mkdir(1, 2, "docs", attrs)
    journal.log_create_inode(3, 2, "notes.txt", FileAttributes(mode=0o644), False, "")
    journal.log_setxattr(3, "user.tag", b"draft", 0)
    journal.force_sync()
    checkpoint_path = journal.create_checkpoint()
```

A `log_*` method exists for each record kind: create/delete/update inode, create/delete/update chunk, lease grant and revoke, mkdir, rmdir, rename, symlink, unlink, setattr, setxattr and removexattr. To write a ready-made `records.LogEntry`, use `write_entry(entry)`. The manager fills in the entry's sequence number, timestamp and checksum.

Errors and return values:

- Calling `start()` on a manager that is already running raises `LogAlreadyStartedError`.
- Writing to a manager that is not running raises `LogNotStartedError`.
- `stop()`, and leaving the `with` block, stops the background threads, flushes any buffered entries and closes the current file.
- `create_checkpoint()` flushes first. It then writes `checkpoint_<seconds>.pb` into the checkpoint directory and returns its path. The file records the sequence number, the current log file and offset, a hex CRC-32 checksum and a few counters.
- `clean_old_logs()` deletes log files whose modification time is older than the retention period and returns the paths it removed.

## Inspecting log files

```python
journal = LogManager(config)
for path in journal.log_files():            # sorted by path
    count = journal.validate_log_file(path)
```

`validate_log_file` returns the number of entries in the file. It raises `CorruptedLogError` for an empty file, a bad header, a truncated frame or an undecodable entry. It raises `InvalidMagicError` when the header's magic number is wrong, and `ChecksumMismatchError` when an entry's stored checksum does not match its content. Both of those are subclasses of `CorruptedLogError`, and all of these errors derive from `LogError`.

`replay_from_sequence(start_seq, callback)` calls `callback` for every entry whose sequence number is greater than `start_seq` and returns the number of calls that succeeded. It treats failures in three ways:

- If the callback raises for an entry, that entry is logged and skipped.
- A file with a wrong magic number, or an empty file, is skipped.
- A file that cannot be read or decoded is logged, and replay carries on with the next file.

The `framing` module (`write_frame`, `read_frame`, `iter_frames`, `read_header`, `write_header`) and the `records` module (`encode_entry`, `decode_entry`, `compute_checksum`, and the header and checkpoint encoders) can also be used directly.

## Recovering master state

```python
from dfsjournal.log_manager import LogManager
from dfsjournal.recovery import RecoveryManager
from dfsjournal.state import MasterState

state = MasterState()
applied = RecoveryManager(LogManager(config), state).recover()

for key, inode in state.metadata:
    print(key.parent_ino, key.name, inode.ino, oct(inode.mode))
```

`RecoveryManager.apply(entry)` applies a single entry.

State layout:

- The metadata tree (`state.MetadataTree`) is ordered by `MetadataKey(parent_ino, name)`.
- `find_by_ino` returns the first `(key, inode)` pair that holds a given inode number.
- Chunk metadata lives in `state.chunk_metadata`, keyed by chunk handle. A chunk handle is a UUID, parsed with `parse_chunk_handle`.
- Creating an inode moves `state.next_ino` past its number.

What recovery does for particular records:

- When an inode is created, its file-type bits are set from the record: directory, symlink when a target is given, or regular file.
- An update or setattr applies only the `mode`, `uid`, `gid`, `size` and `mtime` names in its field mask. It raises `KeyError` for an unknown inode.
- Updating an unknown chunk also raises `KeyError`.

## Limits

- Recovery always replays from sequence 0. Checkpoint files are written but never read back, so no state is restored from them.
- Lease grant and revoke records are written to the journal, but recovery ignores them.
- The package is a library only. It runs no network service and has no command-line interface, and the rebuilt state is held in memory only.