import asyncio

import pytest

from zbproxy.config import (
    DEFAULT_MOTD,
    Access,
    Config,
    MinecraftOptions,
    OutboundOptions,
    ProxyService,
    TLSSniffing,
)
from zbproxy.outbound import SYSTEM_OUTBOUND, Outbound
from zbproxy.service import (
    ProxyServer,
    ServiceError,
    build_outbound,
    check_service,
    handle_client,
    handle_tls,
    ip_allowed,
)
from zbproxy.socks import SocksClient
from zbproxy.transfer import Flow, TransferOptions


class FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, data):
        self.data += data

    def writelines(self, items):
        for item in items:
            self.write(item)

    async def drain(self):
        return None

    def close(self):
        self.closed = True

    def is_closing(self):
        return self.closed

    async def wait_closed(self):
        return None

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return ("127.0.0.1", 5555)
        return default


def make_reader(data):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class FakeOutbound(Outbound):
    def __init__(self, response=b"", error=None):
        self.calls = []
        self.writer = FakeWriter()
        self.response = response
        self.error = error

    async def open_connection(self, host, port):
        self.calls.append((host, port))
        if self.error is not None:
            raise self.error
        return make_reader(self.response), self.writer

    async def handshake(self, reader, writer, host, port):
        return None


def client_hello(server_name):
    name = server_name.encode()
    entry = b"\x00" + len(name).to_bytes(2, "big") + name
    names = len(entry).to_bytes(2, "big") + entry
    ext = b"\x00\x00" + len(names).to_bytes(2, "big") + names
    body = (
        b"\x01\x00\x00\x00" + b"\x03\x03" + bytes(32) + b"\x00"
        + b"\x00\x02\x13\x01" + b"\x01\x00"
        + len(ext).to_bytes(2, "big") + ext
    )
    return b"\x16\x03\x01" + len(body).to_bytes(2, "big") + body


def tls_service(**sniffing):
    return ProxyService(
        name="web", target_address="backend.example.com", target_port=443,
        listen=0, flow="origin", tls_sniffing=TLSSniffing(**sniffing),
    )


def test_check_service_rejects_tls_and_minecraft_together():
    service = tls_service(reject_non_tls=True)
    service.minecraft = MinecraftOptions(enable_hostname_rewrite=True)
    with pytest.raises(ServiceError, match="TLS and Minecraft"):
        check_service(service, Config())


def test_check_service_unknown_flow():
    service = ProxyService(name="svc", flow="teleport")
    with pytest.raises(ServiceError, match="Unknown flow type 'teleport'"):
        check_service(service, Config())


def test_check_service_fills_rewritten_hostname():
    service = ProxyService(
        name="mc", target_address="mc.example.com", target_port=25565,
        minecraft=MinecraftOptions(enable_hostname_rewrite=True),
    )
    flags = check_service(service, Config())
    assert service.minecraft.rewritten_hostname == "mc.example.com"
    assert flags.is_minecraft_handle_needed
    assert not flags.is_tls_handle_needed
    assert flags.flow is Flow.AUTO


def test_default_motd_description_alone_is_not_minecraft():
    service = ProxyService(name="plain", minecraft=MinecraftOptions(motd_description=DEFAULT_MOTD))
    assert check_service(service, Config()).is_minecraft_handle_needed is False


def test_check_service_access_errors():
    missing_tags = ProxyService(name="a", ip_access=Access(mode="allow"))
    with pytest.raises(ServiceError, match="ListTags can't be null"):
        check_service(missing_tags, Config())
    missing_list = ProxyService(name="b", ip_access=Access(mode="block", list_tags=["nope"]))
    with pytest.raises(ServiceError, match="nope"):
        check_service(missing_list, Config())
    bad_mode = ProxyService(name="c", ip_access=Access(mode="maybe"))
    with pytest.raises(ServiceError, match="Unknown access control mode: maybe"):
        check_service(bad_mode, Config())


def test_ip_allowed_modes():
    config = Config(lists={"ok": {"10.0.0.1"}})
    allow = ProxyService(ip_access=Access(mode="allow", list_tags=["ok"]))
    block = ProxyService(ip_access=Access(mode="block", list_tags=["ok"]))
    open_service = ProxyService()
    assert ip_allowed(allow, config, "10.0.0.1") is True
    assert ip_allowed(allow, config, "10.0.0.2") is False
    assert ip_allowed(block, config, "10.0.0.1") is False
    assert ip_allowed(block, config, "10.0.0.2") is True
    assert ip_allowed(open_service, config, "10.0.0.2") is True


def test_build_outbound():
    assert build_outbound(ProxyService()) is SYSTEM_OUTBOUND
    service = ProxyService(outbound=OutboundOptions(type="socks4a", network="tcp",
                                                   address="127.0.0.1:1080"))
    out = build_outbound(service)
    assert isinstance(out, SocksClient)
    assert out.normalized_version() == "4a"
    assert out.address == "127.0.0.1:1080"
    assert out.dialer is SYSTEM_OUTBOUND


@pytest.mark.asyncio
async def test_handle_tls_matching_sni_dials_server_name():
    record = client_hello("example.com")
    config = Config(lists={"sni": {"example.com"}})
    out = FakeOutbound()
    service = tls_service(sni_allow_list_tags=["sni"])
    _, remote_writer = await handle_tls(service, config, make_reader(record), FakeWriter(), out)
    assert out.calls == [("example.com", 443)]
    assert bytes(remote_writer.data) == record


@pytest.mark.asyncio
async def test_handle_tls_unmatched_sni_goes_to_target():
    record = client_hello("other.example.com")
    config = Config(lists={"sni": {"example.com"}})
    out = FakeOutbound()
    service = tls_service(sni_allow_list_tags=["sni"])
    await handle_tls(service, config, make_reader(record), FakeWriter(), out)
    assert out.calls == [("backend.example.com", 443)]
    assert bytes(out.writer.data) == record


@pytest.mark.asyncio
async def test_handle_tls_unmatched_sni_rejected():
    config = Config(lists={"sni": {"example.com"}})
    service = tls_service(sni_allow_list_tags=["sni"], reject_if_non_match=True)
    out = FakeOutbound()
    with pytest.raises(ServiceError):
        await handle_tls(service, config, make_reader(client_hello("x.example.com")),
                         FakeWriter(), out)
    assert out.calls == []


@pytest.mark.asyncio
async def test_handle_tls_non_tls():
    out = FakeOutbound()
    await handle_tls(tls_service(), Config(), make_reader(b"GET / HTTP/1.1"), FakeWriter(), out)
    assert out.calls == [("backend.example.com", 443)]
    assert bytes(out.writer.data) == b"G"

    with pytest.raises(ServiceError, match="not TLS header"):
        await handle_tls(tls_service(reject_non_tls=True), Config(),
                         make_reader(b"GET /"), FakeWriter(), FakeOutbound())


@pytest.mark.asyncio
async def test_handle_client_relays_both_ways():
    out = FakeOutbound(response=b"pong")
    options = TransferOptions(out=out, flow_type=Flow.ORIGIN)
    service = ProxyService(name="svc", target_address="target.example.com", target_port=1234)
    client_writer = FakeWriter()
    ctx = await handle_client(service, Config(), make_reader(b"ping"), client_writer, options)
    assert out.calls == [("target.example.com", 1234)]
    assert bytes(out.writer.data) == b"ping"
    assert bytes(client_writer.data) == b"pong"
    assert options.online_count == 0
    assert ctx.err is None
    assert str(ctx).endswith("√")


@pytest.mark.asyncio
async def test_handle_client_dial_failure():
    out = FakeOutbound(error=OSError("refused"))
    options = TransferOptions(out=out, flow_type=Flow.ORIGIN)
    client_writer = FakeWriter()
    ctx = await handle_client(ProxyService(name="svc"), Config(), make_reader(b""),
                              client_writer, options)
    assert "failed to dial to target server" in str(ctx)
    assert client_writer.closed
    assert options.online_count == 0


async def _echo_server():
    async def echo(reader, writer):
        data = await reader.read(1024)
        writer.write(data)
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(echo, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


@pytest.mark.asyncio
async def test_proxy_server_start_rejects_invalid_service():
    service = ProxyService(name="bad", flow="warp", listen=0)
    proxy = ProxyServer(Config(services=[service]))
    with pytest.raises(ServiceError, match="warp"):
        await proxy.start()
    assert proxy.addresses == []