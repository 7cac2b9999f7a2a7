"""A fixed-capacity byte buffer with a movable window of readable data."""

from __future__ import annotations

from typing import Protocol


class ShortBufferError(Exception):
    """Raised when a buffer has too little room or too little data."""


class _Reader(Protocol):
    def read(self, size: int = ...) -> bytes: ...


class _Writer(Protocol):
    def write(self, data: bytes) -> object: ...


def _read_chunk(reader: _Reader, size: int) -> bytes:
    try:
        return reader.read(size)
    except EOFError:
        return b""


class Buffer:
    """Bytes between ``start`` and ``end`` of a fixed storage area.

    Space before ``start`` is headroom that can be claimed with
    :meth:`extend_header`; space after ``end`` is free for writing.
    """

    __slots__ = ("_data", "_start", "_end")

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError(f"negative buffer size: {size}")
        self._data = bytearray(size)
        self._start = 0
        self._end = 0

    @classmethod
    def wrap(cls, data: bytes | bytearray) -> Buffer:
        """Make a full buffer holding ``data``."""
        buffer = cls(0)
        buffer._data = data if isinstance(data, bytearray) else bytearray(data)
        buffer._end = len(buffer._data)
        return buffer

    def __len__(self) -> int:
        return self._end - self._start

    def __repr__(self) -> str:
        return f"Buffer({self.getvalue()!r}, capacity={self.capacity})"

    @property
    def capacity(self) -> int:
        """Total size of the storage area."""
        return len(self._data)

    @property
    def free_len(self) -> int:
        """Bytes that can still be written after the data."""
        return self.capacity - self._end

    @property
    def is_empty(self) -> bool:
        return self._end == self._start

    @property
    def is_full(self) -> bool:
        return self._end == self.capacity

    def getvalue(self) -> bytes:
        """Return the readable bytes."""
        return bytes(self._data[self._start:self._end])

    def byte(self, index: int) -> int:
        return self._data[self._start + index]

    def set_byte(self, index: int, value: int) -> None:
        self._data[self._start + index] = value

    def extend(self, n: int) -> memoryview:
        """Grow the data by ``n`` bytes and return a view of the new region."""
        end = self._end + n
        if end > self.capacity:
            raise ShortBufferError(
                f"buffer overflow: cap {self.capacity}, end {self._end}, need {n}"
            )
        view = memoryview(self._data)[self._end:end]
        self._end = end
        return view

    def extend_header(self, n: int) -> memoryview:
        """Grow the data by ``n`` bytes at its front and return a view of them."""
        if self._start < n:
            raise ShortBufferError(
                f"buffer overflow: cap {self.capacity}, start {self._start}, need {n}"
            )
        self._start -= n
        return memoryview(self._data)[self._start:self._start + n]

    def advance(self, n: int) -> None:
        self._start += n

    def truncate(self, n: int) -> None:
        """Keep only the first ``n`` readable bytes."""
        self._end = self._start + n

    def write(self, data: bytes) -> int:
        """Append as much of ``data`` as fits and return how much was written."""
        if not data:
            return 0
        if self.is_full:
            raise ShortBufferError("buffer is full")
        n = min(len(data), self.free_len)
        self._data[self._end:self._end + n] = data[:n]
        self._end += n
        return n

    def write_byte(self, value: int) -> None:
        if self.is_full:
            raise ShortBufferError("buffer is full")
        self._data[self._end] = value
        self._end += 1

    def write_zero(self, n: int = 1) -> None:
        """Append ``n`` zero bytes."""
        if self._end + n > self.capacity:
            raise ShortBufferError(f"no room for {n} zero bytes")
        self._data[self._end:self._end + n] = bytes(n)
        self._end += n

    def read(self, n: int = -1) -> bytes:
        """Consume and return up to ``n`` bytes, or all of them if ``n`` < 0."""
        if self.is_empty:
            raise EOFError("buffer is empty")
        if n < 0:
            n = len(self)
        chunk = bytes(self._data[self._start:min(self._start + n, self._end)])
        self._start += len(chunk)
        return chunk

    def read_byte(self) -> int:
        if self.is_empty:
            raise EOFError("buffer is empty")
        value = self._data[self._start]
        self._start += 1
        return value

    def peek(self, n: int) -> bytes:
        """Consume and return exactly ``n`` bytes."""
        if self._start + n > self._end:
            raise ShortBufferError(f"need {n} bytes, have {len(self)}")
        chunk = bytes(self._data[self._start:self._start + n])
        self._start += n
        return chunk

    def read_full_from(self, reader: _Reader, size: int) -> int:
        """Append exactly ``size`` bytes read from ``reader``."""
        if self._end + size > self.capacity:
            raise ShortBufferError(f"no room for {size} bytes")
        got = 0
        while got < size:
            chunk = _read_chunk(reader, size - got)
            if not chunk:
                self._end += got
                raise EOFError(f"unexpected end of stream after {got} of {size} bytes")
            self._data[self._end + got:self._end + got + len(chunk)] = chunk
            got += len(chunk)
        self._end += got
        return got

    def read_once_from(self, reader: _Reader) -> int:
        """Append one read's worth of bytes from ``reader``."""
        if self.is_full:
            raise ShortBufferError("buffer is full")
        chunk = _read_chunk(reader, self.free_len)[: self.free_len]
        self._data[self._end:self._end + len(chunk)] = chunk
        self._end += len(chunk)
        return len(chunk)

    def read_from(self, reader: _Reader) -> int:
        """Append everything ``reader`` yields until it is exhausted."""
        total = 0
        while True:
            if self.is_full:
                raise ShortBufferError("buffer is full")
            n = self.read_once_from(reader)
            if n == 0:
                return total
            total += n

    def write_to(self, writer: _Writer) -> int:
        """Write the readable bytes to ``writer`` without consuming them."""
        data = self.getvalue()
        writer.write(data)
        return len(data)

    def reset(self, pos: int = 0) -> None:
        """Empty the buffer, placing its window at ``pos``."""
        self._start = pos
        self._end = pos

    def rewind(self, start: int) -> None:
        self._start = start

    def resize(self, start: int, end: int) -> None:
        self._start = start
        self._end = start + end

    def copy(self) -> Buffer:
        """Return an independent buffer with the same capacity and window."""
        other = Buffer(self.capacity)
        other._data[self._start:self._end] = self._data[self._start:self._end]
        other._start = self._start
        other._end = self._end
        return other