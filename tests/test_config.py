from pathlib import Path

import pytest

from dfsjournal.config import (
    ChecksumMismatchError,
    CorruptedLogError,
    InvalidMagicError,
    LogAlreadyStartedError,
    LogConfig,
    LogError,
    LogNotStartedError,
)


def test_string_paths_become_paths():
    config = LogConfig(log_dir="journal", checkpoint_dir="snapshots")
    assert config.log_dir == Path("journal")
    assert config.checkpoint_dir == Path("snapshots")


def test_path_values_kept(tmp_path):
    config = LogConfig(log_dir=tmp_path / "logs", checkpoint_dir=tmp_path / "cp")
    assert config.log_dir == tmp_path / "logs"
    assert config.checkpoint_dir == tmp_path / "cp"


def test_zero_buffer_size_allowed():
    config = LogConfig(log_buffer_size=0)
    assert config.log_buffer_size == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"log_buffer_size": -1},
        {"log_sync_interval": 0},
        {"checkpoint_interval": -5},
        {"max_log_file_size": 0},
        {"log_retention_period": -1},
    ],
)
def test_invalid_settings_rejected(kwargs):
    with pytest.raises(ValueError):
        LogConfig(**kwargs)


@pytest.mark.parametrize(
    "error_class, message",
    [
        (LogNotStartedError, "log manager not started"),
        (LogAlreadyStartedError, "log manager already started"),
        (CorruptedLogError, "log file is corrupted"),
        (InvalidMagicError, "invalid log file magic number"),
        (ChecksumMismatchError, "checksum mismatch"),
    ],
)
def test_default_messages(error_class, message):
    assert str(error_class()) == message


def test_custom_message_kept():
    assert str(CorruptedLogError("bad frame")) == "bad frame"


@pytest.mark.parametrize(
    "error_class, message",
    [
        (InvalidMagicError, "invalid log file magic number"),
        (ChecksumMismatchError, "checksum mismatch"),
    ],
)
def test_format_errors_are_corruption(error_class, message):
    error = error_class()
    assert isinstance(error, CorruptedLogError) is True
    assert str(error) == message
    assert error.args == (message,)


@pytest.mark.parametrize(
    "error_class, message",
    [
        (LogNotStartedError, "log manager not started"),
        (LogAlreadyStartedError, "log manager already started"),
        (CorruptedLogError, "log file is corrupted"),
    ],
)
def test_all_errors_share_base(error_class, message):
    error = error_class()
    assert isinstance(error, LogError) is True
    assert str(error) == message
    assert error.args == (message,)