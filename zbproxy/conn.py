"""Length-prefixed Minecraft packet framing over asyncio streams."""

from __future__ import annotations

import asyncio
import contextlib
import sys
from typing import Any

from .buffer import Buffer
from .varint import MAX_VARINT_LEN, encode_varint, read_varint_async


class PacketError(ValueError):
    """Raised when a packet's length prefix cannot be accepted."""


def append_packet_length(buffer: Buffer, length: int) -> None:
    """Prepend the VarInt ``length`` to the buffer's data, using its headroom."""
    data = encode_varint(length)
    buffer.extend_header(len(data))[:] = data


class PacketConn:
    """Reads and writes whole packets on a stream pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: Any) -> None:
        self.reader = reader
        self.writer = writer

    async def read_limited_packet(self, buffer: Buffer, max_len: int) -> None:
        """Read one packet's body into ``buffer``, refusing bodies over ``max_len``."""
        length = await read_varint_async(self.reader)
        if length < 0:
            raise PacketError(f"incorrect packet length: {length}")
        if length > max_len:
            raise PacketError(f"packet max length exceeded: length={length}, max={max_len}")
        if buffer.free_len < length:
            raise PacketError(f"short buffer: free size={buffer.free_len}, need={length}")
        if length == 0:
            return
        try:
            data = await self.reader.readexactly(length)
        except asyncio.IncompleteReadError as exc:
            raise EOFError(
                f"unexpected end of stream after {len(exc.partial)} of {length} bytes"
            ) from exc
        buffer.extend(length)[:] = data

    async def read_packet(self, buffer: Buffer) -> None:
        """Read one packet's body into ``buffer`` with no length limit."""
        await self.read_limited_packet(buffer, sys.maxsize)

    async def write_packet(self, buffer: Buffer) -> None:
        """Send the buffer's data as one packet, then empty the buffer.

        The buffer needs five bytes of headroom for the length prefix.
        """
        try:
            append_packet_length(buffer, len(buffer))
            self.writer.write(buffer.getvalue())
            await self.writer.drain()
        finally:
            buffer.reset(MAX_VARINT_LEN)

    async def write_vectorized_packet(self, buffer: Buffer, *packets: bytes) -> None:
        """Send the buffer's data followed by ``packets`` as one packet."""
        try:
            total = len(buffer) + sum(len(p) for p in packets)
            append_packet_length(buffer, total)
            self.writer.writelines([buffer.getvalue(), *packets])
            await self.writer.drain()
        finally:
            buffer.reset(MAX_VARINT_LEN)

    async def close(self) -> None:
        self.writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await self.writer.wait_closed()