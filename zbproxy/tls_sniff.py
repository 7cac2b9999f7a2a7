"""Extracting the server name from a TLS ClientHello."""

from __future__ import annotations

import asyncio

TLS_HANDSHAKE = 0x16


class SniffError(Exception):
    """A TLS ClientHello could not be used; ``recorded`` holds the bytes read."""

    default_message = "TLS sniffing failed"

    def __init__(self, message: str | None = None, recorded: bytes = b"") -> None:
        super().__init__(message or self.default_message)
        self.recorded = recorded


class NoClueError(SniffError):
    default_message = "not enough information for making a decision"


class NotTLSError(SniffError):
    default_message = "not TLS header"


class NotClientHelloError(SniffError):
    default_message = "not client hello"


def _u16(data: bytes, offset: int) -> int:
    return data[offset] << 8 | data[offset + 1]


def is_valid_tls_version(major: int, minor: int) -> bool:
    return major == 3 and 0 < minor < 4


def read_client_hello(data: bytes) -> str:
    """Return the server name carried by a ClientHello handshake message.

    A message without a server name raises a plain :class:`SniffError`.
    """
    if len(data) < 42:
        raise NoClueError()
    session_id_len = data[38]
    if session_id_len > 32 or len(data) < 39 + session_id_len:
        raise NoClueError()
    data = data[39 + session_id_len:]
    if len(data) < 2:
        raise NoClueError()
    # Cipher suites are two bytes each, so the length must be even.
    cipher_suite_len = _u16(data, 0)
    if cipher_suite_len % 2 == 1 or len(data) < 2 + cipher_suite_len:
        raise NotClientHelloError()
    data = data[2 + cipher_suite_len:]
    if len(data) < 1:
        raise NoClueError()
    compression_len = data[0]
    if len(data) < 1 + compression_len:
        raise NoClueError()
    data = data[1 + compression_len:]

    if len(data) < 2:
        raise NotClientHelloError()
    extensions_len = _u16(data, 0)
    data = data[2:]
    if extensions_len != len(data):
        raise NotClientHelloError()

    while data:
        if len(data) < 4:
            raise NotClientHelloError()
        extension = _u16(data, 0)
        length = _u16(data, 2)
        data = data[4:]
        if len(data) < length:
            raise NotClientHelloError()
        if extension == 0x00:  # server_name
            names = data[:length]
            if len(names) < 2:
                raise NotClientHelloError()
            names_len = _u16(names, 0)
            names = names[2:]
            if len(names) != names_len:
                raise NotClientHelloError()
            while names:
                if len(names) < 3:
                    raise NotClientHelloError()
                name_type = names[0]
                name_len = _u16(names, 1)
                names = names[3:]
                if len(names) < name_len:
                    raise NotClientHelloError()
                if name_type == 0:
                    server_name = names[:name_len].decode("utf-8", errors="surrogateescape")
                    # An SNI value may not include a trailing dot.
                    if server_name.endswith("."):
                        raise NotClientHelloError()
                    return server_name
                names = names[name_len:]
        data = data[length:]

    raise SniffError("not TLS header")


def sniff_tls(data: bytes) -> str:
    """Return the server name from a complete TLS handshake record."""
    if len(data) < 5:
        raise NoClueError()
    if data[0] != TLS_HANDSHAKE:
        raise NotTLSError()
    if not is_valid_tls_version(data[1], data[2]):
        raise NotTLSError()
    header_len = _u16(data, 3)
    if 5 + header_len > len(data):
        raise NoClueError()
    return read_client_hello(bytes(data[5:5 + header_len]))


async def _read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        raise EOFError("unexpected end of stream while sniffing TLS") from exc


async def sniff_and_record_tls(reader: asyncio.StreamReader) -> tuple[str, bytes]:
    """Read a TLS handshake record and return its server name and raw bytes.

    :class:`NotTLSError` means the record header is not TLS; other
    :class:`SniffError` subclasses mean the ClientHello was unusable. Both
    carry the bytes consumed so far in ``recorded``.
    """
    recorded = bytearray(await _read_exactly(reader, 1))
    if recorded[0] != TLS_HANDSHAKE:
        raise NotTLSError(recorded=bytes(recorded))
    version = await _read_exactly(reader, 2)
    recorded += version
    if not is_valid_tls_version(version[0], version[1]):
        raise NotTLSError(recorded=bytes(recorded))
    length = await _read_exactly(reader, 2)
    recorded += length
    body = await _read_exactly(reader, _u16(length, 0))
    recorded += body
    try:
        domain = read_client_hello(body)
    except SniffError as exc:
        exc.recorded = bytes(recorded)
        raise
    return domain, bytes(recorded)