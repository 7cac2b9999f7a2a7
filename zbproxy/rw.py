"""Helpers for reading exact amounts of bytes from streams."""

from __future__ import annotations

from typing import Any


def read_byte(reader: Any) -> int:
    """Read a single byte, using the reader's own ``read_byte`` when it has one."""
    reader_read_byte = getattr(reader, "read_byte", None)
    if callable(reader_read_byte):
        return reader_read_byte()
    data = reader.read(1)
    if not data:
        raise EOFError("unexpected end of stream")
    return data[0]


def read_bytes(reader: Any, size: int) -> bytes:
    """Read exactly ``size`` bytes or raise :class:`EOFError`."""
    chunks = bytearray()
    while len(chunks) < size:
        try:
            chunk = reader.read(size - len(chunks))
        except EOFError:
            chunk = b""
        if not chunk:
            raise EOFError(f"unexpected end of stream after {len(chunks)} of {size} bytes")
        chunks += chunk
    return bytes(chunks)