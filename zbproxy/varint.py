"""Minecraft's variable-length encoding of 32-bit signed integers."""

from __future__ import annotations

import asyncio
from typing import Any

from .buffer import Buffer
from .rw import read_byte

MAX_VARINT_LEN = 5


class VarIntTooBigError(ValueError):
    """Raised when a VarInt runs on for more bytes than allowed."""

    def __init__(self) -> None:
        super().__init__("VarInt is too big")


def _to_int32(value: int) -> int:
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def varint_len(value: int) -> int:
    """Number of bytes the encoding of ``value`` takes."""
    n = _to_int32(value)
    if n < 0:
        return 5
    for length in range(1, 5):
        if n < 1 << (7 * length):
            return length
    return 5


def encode_varint(value: int) -> bytes:
    """Encode ``value`` (taken as a 32-bit signed integer)."""
    num = value & 0xFFFFFFFF
    out = bytearray()
    while True:
        b = num & 0x7F
        num >>= 7
        if num:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


class _Decoder:
    """Accumulates VarInt bytes one at a time."""

    def __init__(self) -> None:
        self.value = 0
        self.count = 0

    def check(self) -> None:
        if self.count > MAX_VARINT_LEN:
            raise VarIntTooBigError()

    def feed(self, byte: int) -> bool:
        """Add a byte; return True once the number is complete."""
        self.value |= ((byte & 0x7F) << (7 * self.count)) & 0xFFFFFFFF
        self.count += 1
        return not byte & 0x80

    @property
    def result(self) -> int:
        return _to_int32(self.value)


def read_varint(reader: Any) -> int:
    """Read one VarInt from a stream or buffer."""
    decoder = _Decoder()
    while True:
        decoder.check()
        if decoder.feed(read_byte(reader)):
            return decoder.result


async def read_varint_async(reader: asyncio.StreamReader) -> int:
    """Read one VarInt from an asyncio stream."""
    decoder = _Decoder()
    while True:
        decoder.check()
        try:
            data = await reader.readexactly(1)
        except asyncio.IncompleteReadError as exc:
            raise EOFError("unexpected end of stream inside VarInt") from exc
        if decoder.feed(data[0]):
            return decoder.result


class VarInt(int):
    """A 32-bit signed integer written in variable-length form."""

    def __new__(cls, value: int = 0) -> VarInt:
        return super().__new__(cls, _to_int32(int(value)))

    def encode(self) -> bytes:
        return encode_varint(self)

    def write_to(self, writer: Any) -> int:
        """Write the encoding to ``writer`` and return the number of bytes."""
        data = self.encode()
        written = writer.write(data)
        return len(data) if written is None else written

    def write_to_buffer(self, buffer: Buffer) -> None:
        """Append the encoding to ``buffer``."""
        data = self.encode()
        buffer.extend(len(data))[:] = data