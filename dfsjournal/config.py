"""Configuration, file-format constants and errors for the operation log."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

LOG_FILE_MAGIC = 0x4446534C
LOG_FILE_VERSION = 1
LOG_FILE_EXT = ".log"
MAX_HEADER_SIZE = 1024 * 1024
MAX_RECOVERY_RETRIES = 3
RECOVERY_BATCH_SIZE = 1000


class LogError(Exception):
    """Base class for every operation-log error."""

    default_message = "operation log error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class LogNotStartedError(LogError):
    """Raised when writing to a log manager that is not running."""

    default_message = "log manager not started"


class LogAlreadyStartedError(LogError):
    """Raised when starting a log manager twice."""

    default_message = "log manager already started"


class CorruptedLogError(LogError):
    """Raised when a log file or record cannot be decoded."""

    default_message = "log file is corrupted"


class InvalidMagicError(CorruptedLogError):
    """Raised when a log file header carries the wrong magic number."""

    default_message = "invalid log file magic number"


class ChecksumMismatchError(CorruptedLogError):
    """Raised when a record's stored checksum does not match its content."""

    default_message = "checksum mismatch"


@dataclass
class LogConfig:
    """Settings for where and how the operation log is written.

    Intervals and periods are in seconds, sizes in bytes.
    """

    log_dir: Path | str = "logs"
    checkpoint_dir: Path | str = "checkpoints"
    log_buffer_size: int = 100
    log_sync_interval: float = 1.0
    checkpoint_interval: float = 300.0
    max_log_file_size: int = 64 * 1024 * 1024
    log_retention_period: float = 7 * 24 * 3600.0

    def __post_init__(self) -> None:
        self.log_dir = Path(self.log_dir)
        self.checkpoint_dir = Path(self.checkpoint_dir)
        if self.log_buffer_size < 0:
            raise ValueError("log_buffer_size must not be negative")
        if self.log_sync_interval <= 0:
            raise ValueError("log_sync_interval must be positive")
        if self.checkpoint_interval <= 0:
            raise ValueError("checkpoint_interval must be positive")
        if self.max_log_file_size <= 0:
            raise ValueError("max_log_file_size must be positive")
        if self.log_retention_period < 0:
            raise ValueError("log_retention_period must not be negative")