"""Per-connection bookkeeping and relaying bytes between two connections."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import random
import sys
from dataclasses import dataclass
from typing import Any

from .console import colorize, random_color
from .outbound import Outbound

CHUNK_SIZE = 8 * 1024
MAX_CHUNKS = 8
PLAIN_BUFFER_SIZE = 32 * 1024


class Flow(enum.IntEnum):
    """How bytes are moved between the client and the target."""

    ORIGIN = 0
    LINUX_ZEROCOPY = 1
    ZEROCOPY = 2
    MULTIPLE = 3
    AUTO = 4


_FLOW_NAMES = {
    "origin": Flow.ORIGIN,
    "linux-zerocopy": Flow.LINUX_ZEROCOPY,
    "zerocopy": Flow.ZEROCOPY,
    "multiple": Flow.MULTIPLE,
    "auto": Flow.AUTO,
    "": Flow.AUTO,
}


def parse_flow(name: str) -> Flow:
    """Map a configured flow name to a :class:`Flow`."""
    try:
        return _FLOW_NAMES[name]
    except KeyError:
        raise ValueError(f"Unknown flow type '{name}'.") from None


class ConnContext:
    """A connection's coloured log identifier, notes and final error."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.id = (rng or random).randrange(2**31)
        self.colored_id = colorize(f"[{self.id}]", random_color(rng))
        self.additional_info: list[str] = []
        self.err: BaseException | None = None

    def attach_info(self, info: str) -> None:
        self.additional_info.append(info)

    def __str__(self) -> str:
        info = f"[{' '.join(self.additional_info)}]" if self.additional_info else ""
        if self.err is None:
            return info + ": √"
        return f"{info}: {self.err}"


@dataclass
class TransferOptions:
    """Settings shared by all connections of one service."""

    out: Outbound | None = None
    is_tls_handle_needed: bool = False
    is_minecraft_handle_needed: bool = False
    flow_type: Flow = Flow.AUTO
    online_count: int = 0


@dataclass
class AllocStrategy:
    """Grows the read size while reads fill it, and shrinks it when they do not."""

    current: int = 1

    def adjust(self, n: int) -> None:
        """Record that the last read filled ``n`` chunks."""
        if n >= self.current:
            self.current *= 2
        else:
            self.current = n
        if self.current > MAX_CHUNKS:
            self.current = MAX_CHUNKS
        if self.current == 0:
            self.current = 1

    def chunk_size(self) -> int:
        """Bytes to ask for in the next read."""
        return self.current * CHUNK_SIZE


async def copy_stream(reader: asyncio.StreamReader, writer: Any,
                      strategy: AllocStrategy | None = None) -> int:
    """Copy until end of stream and return the number of bytes copied.

    Without a strategy every read asks for a fixed 32 KiB.
    """
    total = 0
    while True:
        size = strategy.chunk_size() if strategy is not None else PLAIN_BUFFER_SIZE
        data = await reader.read(size)
        if not data:
            return total
        if strategy is not None:
            strategy.adjust(-(-len(data) // CHUNK_SIZE))
        writer.write(data)
        await writer.drain()
        total += len(data)


def _supports_splice() -> bool:
    return sys.platform.startswith(("linux", "android"))


async def _close(writer: Any) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError, OSError):
        await writer.wait_closed()


async def relay(a_reader: asyncio.StreamReader, a_writer: Any,
                b_reader: asyncio.StreamReader, b_writer: Any,
                flow: Flow = Flow.AUTO) -> None:
    """Copy both ways between connections ``a`` and ``b`` until either side ends.

    Both connections are closed when either direction finishes.
    """
    flow = Flow(flow)
    splice = _supports_splice()
    if flow in (Flow.ZEROCOPY, Flow.LINUX_ZEROCOPY) and not splice:
        raise RuntimeError(
            "Only Linux based systems support Linux ZeroCopy, "
            "please set your flow to origin or auto."
        )
    adaptive = flow is Flow.MULTIPLE or (flow is Flow.AUTO and not splice)

    async def pipe(src: asyncio.StreamReader, dst: Any) -> None:
        try:
            await copy_stream(src, dst, AllocStrategy() if adaptive else None)
        except (ConnectionError, OSError, EOFError):
            pass
        finally:
            await _close(a_writer)
            await _close(b_writer)

    await asyncio.gather(pipe(a_reader, b_writer), pipe(b_reader, a_writer))