"""Length-prefixed framing of log files: a 4-byte little-endian size, then data."""

from __future__ import annotations

import struct
from typing import BinaryIO, Iterator

from dfsjournal.config import (
    LOG_FILE_MAGIC,
    MAX_HEADER_SIZE,
    CorruptedLogError,
    InvalidMagicError,
)
from dfsjournal.records import LogFileHeader, decode_header, encode_header

_SIZE = struct.Struct("<I")
_MAX_FRAME = 0xFFFFFFFF


def _read_up_to(stream: BinaryIO, count: int) -> bytes:
    parts = []
    remaining = count
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def write_frame(stream: BinaryIO, data: bytes) -> int:
    """Write one frame and return the number of bytes written."""
    if len(data) > _MAX_FRAME:
        raise ValueError("frame too large for a 32-bit size prefix")
    stream.write(_SIZE.pack(len(data)))
    stream.write(data)
    return _SIZE.size + len(data)


def read_frame(stream: BinaryIO) -> bytes | None:
    """Read one frame; return None at a clean end of stream."""
    prefix = _read_up_to(stream, _SIZE.size)
    if not prefix:
        return None
    if len(prefix) < _SIZE.size:
        raise CorruptedLogError("truncated frame size")
    (size,) = _SIZE.unpack(prefix)
    data = _read_up_to(stream, size)
    if len(data) < size:
        raise CorruptedLogError(f"truncated frame data: expected {size} bytes, got {len(data)}")
    return data


def iter_frames(stream: BinaryIO) -> Iterator[bytes]:
    """Yield frames until the stream ends."""
    while (frame := read_frame(stream)) is not None:
        yield frame


def read_header(stream: BinaryIO) -> LogFileHeader:
    """Read and check the header frame that starts every log file."""
    prefix = _read_up_to(stream, _SIZE.size)
    if len(prefix) < _SIZE.size:
        raise CorruptedLogError("unexpected EOF while reading header size")
    (size,) = _SIZE.unpack(prefix)
    if size == 0 or size > MAX_HEADER_SIZE:
        raise CorruptedLogError(f"invalid header size: {size}")
    data = _read_up_to(stream, size)
    if len(data) < size:
        raise CorruptedLogError("unexpected EOF while reading header data")
    header = decode_header(data)
    if header.magic != LOG_FILE_MAGIC:
        raise InvalidMagicError()
    return header


def write_header(stream: BinaryIO, header: LogFileHeader) -> int:
    """Write a header frame and return the number of bytes written."""
    return write_frame(stream, encode_header(header))