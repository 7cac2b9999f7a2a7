"""Listening services: accepting clients, checking access and forwarding them."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import struct
from dataclasses import dataclass
from typing import Any

from .config import DEFAULT_MOTD, Access, AccessMode, Config, ConfigError, ProxyService
from .errors import cause
from .minecraft import handle_connection
from .outbound import Outbound, Streams, new_system_outbound
from .socks import SocksClient
from .tls_sniff import is_valid_tls_version, read_client_hello
from .transfer import ConnContext, Flow, TransferOptions, parse_flow, relay

logger = logging.getLogger(__name__)

SOCKS_OUTBOUND_TYPES = ("socks", "socks5", "socks4a", "socks4")
TLS_HANDSHAKE = 0x16


class ServiceError(Exception):
    """Raised when a service cannot be started or a client is refused."""


@dataclass(frozen=True)
class ServiceFlags:
    """What a service has to inspect on each connection, and how it relays."""

    is_tls_handle_needed: bool
    is_minecraft_handle_needed: bool
    flow: Flow


def _check_access(service: ProxyService, config: Config, access: Access) -> None:
    if access.mode == AccessMode.DEFAULT.value:
        return
    if access.mode not in (AccessMode.ALLOW.value, AccessMode.BLOCK.value):
        raise ServiceError(f"Unknown access control mode: {access.mode}")
    if access.list_tags is None:
        raise ServiceError(
            f"Service {service.name}: ListTags can't be null when access control enabled.")
    for tag in access.list_tags:
        try:
            config.get_list(tag)
        except ConfigError as exc:
            raise ServiceError(f"Service {service.name}: {exc}") from exc


def check_service(service: ProxyService, config: Config) -> ServiceFlags:
    """Validate a service's settings and work out how its connections are handled.

    Fills in the rewritten hostname when rewriting is enabled without one.
    """
    tls = service.tls_sniffing
    mc = service.minecraft
    is_tls = bool(tls.reject_non_tls or tls.reject_if_non_match or tls.sni_allow_list_tags)
    is_minecraft = bool(
        mc.enable_hostname_rewrite
        or mc.enable_any_dest
        or (mc.motd_description != "" and mc.motd_description != DEFAULT_MOTD)
        or mc.motd_favicon != ""
    )
    if is_tls and is_minecraft:
        raise ServiceError(
            f"Service {service.name}: The current version can't handle TLS and "
            "Minecraft at the same time.")
    try:
        flow = parse_flow(service.flow)
    except ValueError as exc:
        raise ServiceError(
            f"Service {service.name}: Unknown flow type '{service.flow}'.") from exc
    if mc.enable_hostname_rewrite and not mc.rewritten_hostname:
        mc.rewritten_hostname = service.target_address

    _check_access(service, config, service.ip_access)
    if is_minecraft:
        _check_access(service, config, mc.name_access)
    return ServiceFlags(is_tls, is_minecraft, flow)


def build_outbound(service: ProxyService) -> Outbound:
    """The outbound a service dials its target through."""
    out: Outbound = new_system_outbound(service.socket_options)
    if service.outbound.type in SOCKS_OUTBOUND_TYPES:
        out = SocksClient(
            dialer=out,
            version=service.outbound.type,
            network=service.outbound.network,
            address=service.outbound.address,
        )
    return out


def ip_allowed(service: ProxyService, config: Config, ip: str) -> bool:
    """Whether the service's IP access rules let ``ip`` in."""
    access = service.ip_access
    if access.mode == AccessMode.DEFAULT.value:
        return True
    hit = any(ip in config.get_list(tag) for tag in access.list_tags or ())
    if access.mode == AccessMode.ALLOW.value:
        return hit
    if access.mode == AccessMode.BLOCK.value:
        return not hit
    return True


async def _read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        raise EOFError(
            f"unexpected end of stream after {len(exc.partial)} of {n} bytes") from exc


async def _close(writer: Any) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError, OSError):
        await writer.wait_closed()


def _server_name(result: Any) -> str:
    domain = getattr(result, "domain", result)
    if callable(domain):
        domain = domain()
    return str(domain)


async def _dial_and_write(out: Outbound, host: str, port: int, data: bytes) -> Streams:
    remote_reader, remote_writer = await out.open_connection(host, port)
    try:
        remote_writer.write(data)
        await remote_writer.drain()
    except BaseException:
        await _close(remote_writer)
        raise
    return remote_reader, remote_writer


async def handle_tls(service: ProxyService, config: Config, reader: asyncio.StreamReader,
                     writer: Any, out: Outbound) -> Streams:
    """Read the TLS ClientHello and connect to the target it names or the default one.

    Everything read from the client is replayed to the chosen target.
    """
    recorded = bytearray()
    sniffing = service.tls_sniffing

    async def take(n: int) -> bytes:
        data = await _read_exactly(reader, n)
        recorded.extend(data)
        return data

    async def not_tls() -> Streams:
        if sniffing.reject_non_tls:
            raise ServiceError("not TLS header")
        return await _dial_and_write(out, service.target_address, service.target_port,
                                     bytes(recorded))

    first = await take(1)
    if first[0] != TLS_HANDSHAKE:
        return await not_tls()
    version = await take(2)
    if not is_valid_tls_version(version[0], version[1]):
        return await not_tls()
    length = int.from_bytes(await take(2), "big")
    body = await take(length)
    domain = _server_name(read_client_hello(body))

    hit = any(domain in config.get_list(tag) for tag in sniffing.sni_allow_list_tags or ())
    if not hit:
        if sniffing.reject_if_non_match:
            raise ServiceError(f"server name {domain!r} is not allowed")
        return await _dial_and_write(out, service.target_address, service.target_port,
                                     bytes(recorded))
    return await _dial_and_write(out, domain, service.target_port, bytes(recorded))


def _peer(writer: Any) -> Any:
    return writer.get_extra_info("peername")


def _peer_text(writer: Any) -> str:
    peer = _peer(writer)
    if isinstance(peer, tuple) and len(peer) >= 2:
        host, port = peer[0], peer[1]
        return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"
    return str(peer)


async def handle_client(service: ProxyService, config: Config, reader: asyncio.StreamReader,
                        writer: Any, options: TransferOptions) -> ConnContext:
    """Serve one accepted client and return its connection context."""
    ctx = ConnContext()
    peer = _peer_text(writer)
    logger.info("Service %s : %s [+] %s", service.name, ctx.colored_id, peer)
    try:
        remote: Streams | None = None
        try:
            if options.is_tls_handle_needed:
                remote = await handle_tls(service, config, reader, writer, options.out)
            elif options.is_minecraft_handle_needed:
                remote = await handle_connection(service, config, ctx, reader, writer, options)
        except Exception as exc:
            ctx.err = exc
            await _close(writer)
            return ctx

        if remote is None:
            try:
                remote = await options.out.open_connection(
                    service.target_address, service.target_port)
            except Exception as exc:
                ctx.err = cause("failed to dial to target server: ", exc)
                await _close(writer)
                return ctx

        options.online_count += 1
        try:
            await relay(reader, writer, remote[0], remote[1], options.flow_type)
        finally:
            options.online_count -= 1
        return ctx
    finally:
        logger.info("Service %s : %s [-] %s %s", service.name, ctx.colored_id, peer, ctx)


def _force_close(writer: Any) -> None:
    """Close so that the peer gets a reset rather than an orderly shutdown."""
    sock = writer.get_extra_info("socket")
    if sock is not None:
        with contextlib.suppress(OSError, AttributeError):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
    writer.close()


class ProxyServer:
    """Runs a listener for every service in a configuration."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._servers: list[asyncio.AbstractServer] = []

    @property
    def addresses(self) -> list[Any]:
        """The socket addresses currently listened on."""
        return [sock.getsockname() for server in self._servers for sock in server.sockets]

    def _make_handler(self, service: ProxyService, config: Config, options: TransferOptions):
        async def on_client(reader: asyncio.StreamReader, writer: Any) -> None:
            try:
                peer = _peer(writer)
                ip = str(peer[0]) if isinstance(peer, tuple) else str(peer)
                if not ip_allowed(service, config, ip):
                    _force_close(writer)
                    return
                await handle_client(service, config, reader, writer, options)
            except Exception:
                logger.exception("Service %s: unexpected error while serving a client",
                                 service.name)
                writer.close()

        return on_client

    async def start(self) -> None:
        """Validate every service, then start listening for each of them."""
        config = self.config
        prepared = [(service, check_service(service, config)) for service in config.services]
        for service, flags in prepared:
            options = TransferOptions(
                out=build_outbound(service),
                is_tls_handle_needed=flags.is_tls_handle_needed,
                is_minecraft_handle_needed=flags.is_minecraft_handle_needed,
                flow_type=flags.flow,
            )
            try:
                server = await asyncio.start_server(
                    self._make_handler(service, config, options), host=None, port=service.listen)
            except OSError as exc:
                await self.stop()
                raise ServiceError(
                    f"Service {service.name}: Can't start listening on port "
                    f"{service.listen}: {exc}") from exc
            self._servers.append(server)

    async def stop(self) -> None:
        """Close every listener; connections already relaying carry on."""
        servers, self._servers = self._servers, []
        for server in servers:
            server.close()

    async def restart(self, config: Config) -> None:
        """Replace the listeners with those of ``config``."""
        await self.stop()
        self.config = config
        await self.start()