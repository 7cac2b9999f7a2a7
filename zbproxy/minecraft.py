"""Handling of Minecraft handshakes: server list status, login checks and forwarding."""

from __future__ import annotations

import asyncio
import json
import logging
import socket
import struct
import time
from dataclasses import asdict, is_dataclass
from typing import Any

from .buffer import Buffer
from .config import AccessMode, Config, ProxyService
from .conn import PacketConn, append_packet_length
from .console import VERSION
from .errors import cause
from .message import AQUA, GOLD, GRAY, LIGHT_PURPLE, RED, WHITE, Message
from .packet import Field, scan, write_fields
from .transfer import ConnContext, TransferOptions
from .varint import MAX_VARINT_LEN, read_varint, read_varint_async

logger = logging.getLogger(__name__)

PING_MODE_DISCONNECT = "disconnect"
PING_MODE_0MS = "0ms"

FML_SUFFIX = "\x00FML\x00"
MAX_INT64 = 2**63 - 1
MAX_PLAYER_NAME_LEN = 16

_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026",
                 "\u2028": "\\u2028", "\u2029": "\\u2029"}


class MotdHandled(Exception):
    """The client asked for the server list status and was answered here."""

    def __init__(self) -> None:
        super().__init__("handled MOTD")


class LoginRejected(Exception):
    """A login attempt was refused and the client was sent a disconnect message."""


class AccessRejected(LoginRejected):
    def __init__(self) -> None:
        super().__init__("interrupted by access control")


class PlayerLimitExceeded(LoginRejected):
    def __init__(self) -> None:
        super().__init__("rejected due to player number limit exceeded")


class BadPlayerName(ValueError):
    def __init__(self) -> None:
        super().__init__("rejected due to bad player name")


class HostnameRejected(Exception):
    def __init__(self) -> None:
        super().__init__("hostname is not allowed")


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def _dump(obj: Any) -> bytes:
    text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def generate_motd(protocol_version: int, service: ProxyService, online: int = 0) -> bytes:
    """Build the status response JSON.

    A negative configured online count means ``online`` is reported instead.
    """
    mc = service.minecraft
    count = mc.online_count
    players: dict[str, Any] = {
        "max": count.max,
        "online": count.online if count.online >= 0 else online,
    }
    if count.sample is not None:
        players["sample"] = _jsonable(count.sample)
    return _dump({
        "version": {"name": f"ZBProxy {VERSION}", "protocol": protocol_version},
        "players": players,
        "description": {"text": mc.motd_description},
        "favicon": mc.motd_favicon,
    })


def _rejection_message(service: ProxyService, name: str, reason: str,
                       timestamp: int | None) -> Message:
    if timestamp is None:
        timestamp = time.time_ns() // 1_000_000
    return Message(
        color=WHITE,
        extra=[
            Message(bold=True, color=RED, text="ZB"),
            Message(bold=True, text="Proxy"),
            Message(text=" - "),
            Message(bold=True, color=GOLD, text="Connection Rejected\n"),
            Message(text="Your connection request is refused by ZBProxy.\n"),
            Message(text="Reason: "),
            Message(color=LIGHT_PURPLE, text=reason),
            Message(text="Please contact the Administrators for help.\n\n"),
            Message(
                color=GRAY,
                text=f"Timestamp: {timestamp} | Player Name: {name} | Service: {service.name}\n",
            ),
        ],
    )


def generate_kick_message(service: ProxyService, name: str,
                          timestamp: int | None = None) -> Message:
    """The disconnect message for a player refused by access control."""
    return _rejection_message(
        service, name, "You don't have permission to access this service.\n", timestamp)


def generate_player_limit_message(service: ProxyService, name: str,
                                  timestamp: int | None = None) -> Message:
    """The disconnect message for a player refused by the online limit."""
    return _rejection_message(
        service, name, "Service online player number limitation exceeded.\n", timestamp)


def name_accessibility(service: ProxyService, config: Config, name: str) -> str:
    """Classify a player name: DEFAULT, ALLOW, DENY, REJECT or PASS."""
    access = service.minecraft.name_access
    if access.mode == AccessMode.DEFAULT.value:
        return "DEFAULT"
    hit = any(name in config.get_list(tag) for tag in access.list_tags or ())
    if access.mode == AccessMode.ALLOW.value:
        return "ALLOW" if hit else "DENY"
    if access.mode == AccessMode.BLOCK.value:
        return "REJECT" if hit else "PASS"
    return "DEFAULT"


def rewrite_hostname(service: ProxyService, hostname: str) -> str:
    """The hostname sent to the target, keeping a Forge suffix unless told not to."""
    mc = service.minecraft
    rewritten = mc.rewritten_hostname or service.target_address
    if not mc.ignore_fml_suffix and hostname.endswith(FML_SUFFIX):
        return rewritten + FML_SUFFIX
    return rewritten


def _set_linger(writer: Any, seconds: int) -> None:
    sock = writer.get_extra_info("socket")
    if sock is None:
        return
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, seconds))
    except (OSError, AttributeError):
        pass


async def _read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        raise EOFError(
            f"unexpected end of stream after {len(exc.partial)} of {n} bytes"
        ) from exc


async def _disconnect(conn: PacketConn, writer: Any, buffer: Buffer, message: Message) -> None:
    msg = message.to_json().encode("utf-8")
    buffer.reset(MAX_VARINT_LEN)
    write_fields(buffer, (Field.BYTE, 0x00), (Field.VARINT, len(msg)))
    await conn.write_vectorized_packet(buffer, msg)
    _set_linger(writer, 10)
    await conn.close()


async def handle_connection(service: ProxyService, config: Config, ctx: ConnContext,
                            reader: asyncio.StreamReader, writer: Any,
                            options: TransferOptions) -> tuple[asyncio.StreamReader, Any]:
    """Process a client's handshake and return streams to the target.

    Raises :class:`MotdHandled` when a status request was answered locally, and
    :class:`LoginRejected`, :class:`BadPlayerName` or :class:`HostnameRejected`
    when the client is refused.
    """
    mc = service.minecraft
    target = (service.target_address, service.target_port)
    buffer = Buffer(256)
    buffer.reset(MAX_VARINT_LEN)
    conn = PacketConn(reader, writer)

    await conn.read_limited_packet(buffer, 250)
    try:
        read_varint(buffer)  # packet ID
        protocol = read_varint(buffer)
        hostname, port, next_state = scan(buffer, Field.STRING, Field.UINT16, Field.BYTE)
    except (IndexError, struct.error) as exc:
        logger.error("Service %s : Bad Minecraft packet was received: %s", service.name, exc)
        raise ValueError(f"bad Minecraft packet: {exc}") from exc

    if mc.enable_hostname_access and mc.hostname_access not in hostname:
        _set_linger(writer, 0)
        raise HostnameRejected()

    if next_state == 1:
        if not mc.motd_description and not mc.motd_favicon:
            remote_reader, remote_writer = await options.out.open_connection(*target)
            buffer.rewind(MAX_VARINT_LEN)
            await PacketConn(remote_reader, remote_writer).write_packet(buffer)
            return remote_reader, remote_writer

        # The status request carries nothing, but must be consumed.
        await conn.read_limited_packet(buffer, 1)
        motd = generate_motd(protocol, service, options.online_count)
        buffer.reset(MAX_VARINT_LEN)
        write_fields(buffer, (Field.BYTE, 0x00), (Field.VARINT, len(motd)))
        await conn.write_vectorized_packet(buffer, motd)

        buffer.reset(MAX_VARINT_LEN)
        if mc.ping_mode == PING_MODE_0MS:
            write_fields(buffer, (Field.BYTE, 0x01), (Field.INT64, MAX_INT64))
            await conn.write_packet(buffer)
        elif mc.ping_mode != PING_MODE_DISCONNECT:
            await conn.read_limited_packet(buffer, 9)
            await conn.write_packet(buffer)
        await conn.close()
        raise MotdHandled()

    # Login Start: only the length and player name are read; the rest of the
    # packet, whose layout varies between versions, is forwarded untouched.
    buffer.reset(MAX_VARINT_LEN)
    login_start_len = await read_varint_async(reader)
    await read_varint_async(reader)  # packet ID
    name_len = await read_varint_async(reader)
    if name_len > MAX_PLAYER_NAME_LEN or name_len <= 0:
        raise BadPlayerName()
    player_name = (await _read_exactly(reader, name_len)).decode("utf-8", errors="surrogateescape")

    limit = mc.online_count
    if limit.enable_max_limit and limit.max <= options.online_count:
        logger.info(
            "Service %s : %s Rejected a new Minecraft player login request due to "
            "online player number limit: %s", service.name, ctx.colored_id, player_name)
        await _disconnect(conn, writer, buffer, generate_player_limit_message(service, player_name))
        raise PlayerLimitExceeded()

    accessibility = name_accessibility(service, config, player_name)
    logger.info("Service %s : %s New Minecraft player logged in: %s [%s]",
                service.name, ctx.colored_id, player_name, accessibility)
    ctx.attach_info("PlayerName=" + player_name)
    if accessibility in ("DENY", "REJECT"):
        await _disconnect(conn, writer, buffer, generate_kick_message(service, player_name))
        raise AccessRejected()

    try:
        remote_reader, remote_writer = await options.out.open_connection(*target)
    except Exception as exc:
        await conn.close()
        raise cause("failed to dial to target server: ", exc) from exc

    buffer.reset(MAX_VARINT_LEN)
    if mc.enable_hostname_rewrite:
        write_fields(buffer, (Field.BYTE, 0x00), (Field.VARINT, protocol),
                     (Field.STRING, rewrite_hostname(service, hostname)),
                     (Field.UINT16, service.target_port), (Field.BYTE, 2))
    else:
        write_fields(buffer, (Field.BYTE, 0x00), (Field.VARINT, protocol),
                     (Field.STRING, hostname), (Field.UINT16, port), (Field.BYTE, 2))
    await PacketConn(remote_reader, remote_writer).write_packet(buffer)

    buffer.reset(MAX_VARINT_LEN)
    write_fields(buffer, (Field.BYTE, 0x00), (Field.STRING, player_name))
    append_packet_length(buffer, login_start_len)
    remote_writer.write(buffer.getvalue())
    await remote_writer.drain()
    return remote_reader, remote_writer