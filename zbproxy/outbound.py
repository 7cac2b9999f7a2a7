"""Ways of opening connections to a target, with per-socket options."""

from __future__ import annotations

import abc
import asyncio
import socket
import sys
from typing import Any

from .config import SocketOptions

TCP_FASTOPEN_CONNECT = 30  # Linux, outgoing connections
TCP_FASTOPEN_CLIENT = 0x02  # macOS client value
WINDOWS_TCP_FASTOPEN = 15

_LINUX_SOL_SOCKET = 1
_LINUX_SO_MARK = 36
_LINUX_SO_BINDTODEVICE = 25
_LINUX_SOL_TCP = 6
_LINUX_TCP_CONGESTION = 13
_DARWIN_TCP_FASTOPEN = 0x105
_FREEBSD_SOL_SOCKET = 0xFFFF
_FREEBSD_SO_USER_COOKIE = 0x1015
_FREEBSD_TCP_FASTOPEN = 0x401
_IPPROTO_TCP = 6
_IPPROTO_MPTCP = 262

Streams = tuple[asyncio.StreamReader, asyncio.StreamWriter]


class Outbound(abc.ABC):
    """Opens connections to remote hosts."""

    @abc.abstractmethod
    async def open_connection(self, host: str, port: int) -> Streams:
        """Connect to ``host``:``port`` and return the stream pair."""

    @abc.abstractmethod
    async def handshake(self, reader: asyncio.StreamReader, writer: Any, host: str, port: int) -> None:
        """Negotiate a tunnel to ``host``:``port`` over an existing stream."""


def socket_option_calls(options: SocketOptions | None, network: str,
                        platform: str | None = None) -> list[tuple[int, int, int | bytes]]:
    """List the ``(level, option, value)`` settings to apply on ``platform``."""
    platform = sys.platform if platform is None else platform
    if options is None:
        return []
    tcp = network.startswith("tcp")
    calls: list[tuple[int, int, int | bytes]] = []
    if platform.startswith(("linux", "android")):
        if options.mark:
            calls.append((_LINUX_SOL_SOCKET, _LINUX_SO_MARK, options.mark))
        if options.interface:
            calls.append((_LINUX_SOL_SOCKET, _LINUX_SO_BINDTODEVICE, options.interface.encode()))
        if tcp and options.tcp_fast_open:
            calls.append((_LINUX_SOL_TCP, TCP_FASTOPEN_CONNECT, 1))
        if tcp and options.tcp_congestion:
            calls.append((_LINUX_SOL_TCP, _LINUX_TCP_CONGESTION, options.tcp_congestion.encode()))
    elif platform == "darwin":
        if tcp and options.tcp_fast_open:
            calls.append((_IPPROTO_TCP, _DARWIN_TCP_FASTOPEN, TCP_FASTOPEN_CLIENT))
    elif platform.startswith("freebsd"):
        if options.mark:
            calls.append((_FREEBSD_SOL_SOCKET, _FREEBSD_SO_USER_COOKIE, options.mark))
        if tcp and options.tcp_fast_open:
            calls.append((_IPPROTO_TCP, _FREEBSD_TCP_FASTOPEN, 1))
    elif platform == "win32":
        if tcp and options.tcp_fast_open:
            calls.append((_IPPROTO_TCP, WINDOWS_TCP_FASTOPEN, 1))
    return calls


def apply_socket_options(sock: Any, options: SocketOptions | None, network: str) -> None:
    """Apply ``options`` to ``sock`` as this platform supports them."""
    for level, name, value in socket_option_calls(options, network):
        sock.setsockopt(level, name, value)


class SystemOutbound(Outbound):
    """Connects directly using the operating system's network stack."""

    def __init__(self, options: SocketOptions | None = None) -> None:
        self.options = options

    def _make_socket(self, family: int, type_: int, proto: int) -> socket.socket:
        if self.options is not None and self.options.multi_path_tcp:
            mptcp = getattr(socket, "IPPROTO_MPTCP", _IPPROTO_MPTCP)
            try:
                return socket.socket(family, type_, mptcp)
            except OSError:
                pass  # fall back to plain TCP
        return socket.socket(family, type_, proto)

    async def open_connection(self, host: str, port: int) -> Streams:
        if self.options is None:
            return await asyncio.open_connection(host, port)
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        last_error: OSError | None = None
        for family, type_, proto, _, address in infos:
            sock = self._make_socket(family, type_, proto)
            try:
                apply_socket_options(sock, self.options, "tcp")
                sock.setblocking(False)
                await loop.sock_connect(sock, address)
            except OSError as exc:
                sock.close()
                last_error = exc
                continue
            except BaseException:
                sock.close()
                raise
            return await asyncio.open_connection(sock=sock)
        raise last_error or OSError(f"no address found for {host}")

    async def handshake(self, reader: asyncio.StreamReader, writer: Any, host: str, port: int) -> None:
        return None


SYSTEM_OUTBOUND = SystemOutbound()


def new_system_outbound(options: SocketOptions | None) -> SystemOutbound:
    """Return the shared direct outbound, or a new one carrying ``options``."""
    if options is None:
        return SYSTEM_OUTBOUND
    return SystemOutbound(options)


def join_host_port(host: str, port: int | str) -> str:
    """Combine host and port, bracketing hosts that contain colons."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(address: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` into host and port strings."""

    def fail(reason: str) -> ValueError:
        return ValueError(f"address {address}: {reason}")

    colon = address.rfind(":")
    if colon < 0:
        raise fail("missing port in address")
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise fail("missing ']' in address")
        if end + 1 == len(address):
            raise fail("missing port in address")
        if end + 1 != colon:
            if address[end + 1] == ":":
                raise fail("too many colons in address")
            raise fail("missing port in address")
        host = address[1:end]
        if "[" in address[1:] or "]" in address[end + 1:]:
            raise fail("unexpected '[' or ']' in address")
    else:
        host = address[:colon]
        if ":" in host:
            raise fail("too many colons in address")
        if "[" in address or "]" in address:
            raise fail("unexpected '[' or ']' in address")
    return host, address[colon + 1:]