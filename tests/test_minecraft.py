import asyncio
import json
import random
import struct

import pytest

from zbproxy.config import (
    Access,
    Config,
    ConfigError,
    MinecraftOptions,
    OnlineCount,
    ProxyService,
    Sample,
)
from zbproxy.console import VERSION
from zbproxy.errors import CauseError
from zbproxy.message import GRAY, RED, Message
from zbproxy.minecraft import (
    AccessRejected,
    BadPlayerName,
    HostnameRejected,
    MotdHandled,
    PlayerLimitExceeded,
    generate_kick_message,
    generate_motd,
    generate_player_limit_message,
    handle_connection,
    name_accessibility,
    rewrite_hostname,
)
from zbproxy.outbound import Outbound
from zbproxy.transfer import ConnContext, TransferOptions
from zbproxy.varint import encode_varint, read_varint_async


def make_stream(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, data):
        self.data += data

    def writelines(self, lines):
        for line in lines:
            self.data += line

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass

    def get_extra_info(self, name, default=None):
        return default


class FakeOutbound(Outbound):
    def __init__(self, error=None):
        self.error = error
        self.writer = FakeWriter()
        self.dialed = []

    async def open_connection(self, host, port):
        self.dialed.append((host, port))
        if self.error is not None:
            raise self.error
        return make_stream(b""), self.writer

    async def handshake(self, reader, writer, host, port):
        return None


def packet(body: bytes) -> bytes:
    return encode_varint(len(body)) + body


def handshake_body(protocol, host, port, next_state):
    raw = host.encode()
    return (b"\x00" + encode_varint(protocol) + encode_varint(len(raw)) + raw
            + struct.pack(">H", port) + bytes([next_state]))


def make_service(**minecraft):
    return ProxyService(
        name="svc",
        target_address="target.example.com",
        target_port=25565,
        listen=25565,
        flow="auto",
        minecraft=MinecraftOptions(**minecraft),
    )


def make_options(out=None, online=0):
    return TransferOptions(out=out or FakeOutbound(), is_minecraft_handle_needed=True,
                           online_count=online)


def make_ctx():
    return ConnContext(random.Random(0))


def test_motd_uses_given_online_when_configured_negative():
    service = make_service(online_count=OnlineCount(max=114514, online=-1),
                           motd_description="hello", motd_favicon="icon")
    motd = json.loads(generate_motd(47, service, 3))
    assert motd["version"] == {"name": f"ZBProxy {VERSION}", "protocol": 47}
    assert motd["players"] == {"max": 114514, "online": 3}
    assert motd["description"] == {"text": "hello"}
    assert motd["favicon"] == "icon"


def test_motd_uses_configured_online_and_samples():
    samples = [Sample(name="Steve", id="abc")]
    service = make_service(online_count=OnlineCount(max=10, online=7, sample=samples))
    motd = json.loads(generate_motd(47, service, 3))
    assert motd["players"]["online"] == 7
    assert motd["players"]["sample"] == [{"name": "Steve", "id": "abc"}]


def test_motd_escapes_html():
    service = make_service(motd_description="a<b&c")
    raw = generate_motd(47, service)
    assert b"a\\u003cb\\u0026c" in raw
    assert json.loads(raw)["description"]["text"] == "a<b&c"


def test_kick_message_contents():
    service = make_service()
    message = generate_kick_message(service, "Steve", 123)
    assert message.extra[0].text == "ZB"
    assert message.extra[0].color == RED
    assert message.extra[0].bold is True
    assert message.extra[6].text == "You don't have permission to access this service.\n"
    stamp = message.extra[8]
    assert stamp.color == GRAY
    assert stamp.text == "Timestamp: 123 | Player Name: Steve | Service: svc\n"


def test_player_limit_message_round_trips():
    service = make_service()
    message = generate_player_limit_message(service, "Alex", 5)
    assert message.extra[6].text == "Service online player number limitation exceeded.\n"
    assert Message.from_json(message.to_json()) == message


@pytest.mark.parametrize(
    "mode,name,expected",
    [
        ("", "Steve", "DEFAULT"),
        ("allow", "Steve", "ALLOW"),
        ("allow", "Alex", "DENY"),
        ("block", "Steve", "REJECT"),
        ("block", "Alex", "PASS"),
    ],
)
def test_name_accessibility(mode, name, expected):
    service = make_service(name_access=Access(mode=mode, list_tags=["vip"]))
    config = Config(lists={"vip": {"Steve"}})
    assert name_accessibility(service, config, name) == expected


def test_name_accessibility_missing_list():
    service = make_service(name_access=Access(mode="allow", list_tags=["nope"]))
    with pytest.raises(ConfigError):
        name_accessibility(service, Config(), "Steve")


def test_rewrite_hostname_keeps_fml_suffix():
    service = make_service(enable_hostname_rewrite=True, rewritten_hostname="new.example.com")
    assert rewrite_hostname(service, "old\x00FML\x00") == "new.example.com\x00FML\x00"
    assert rewrite_hostname(service, "old") == "new.example.com"


def test_rewrite_hostname_ignore_suffix_and_default():
    service = make_service(enable_hostname_rewrite=True, ignore_fml_suffix=True)
    assert rewrite_hostname(service, "old\x00FML\x00") == "target.example.com"


@pytest.mark.asyncio
async def test_status_with_custom_motd_and_0ms_ping():
    service = make_service(motd_description="desc", ping_mode="0ms",
                           online_count=OnlineCount(max=20, online=-1))
    client = make_stream(packet(handshake_body(47, "play.example.com", 25565, 1))
                         + packet(b"\x00"))
    writer = FakeWriter()
    with pytest.raises(MotdHandled):
        await handle_connection(service, Config(), make_ctx(), client, writer,
                                make_options(online=2))
    assert writer.closed
    out = make_stream(bytes(writer.data))
    length = await read_varint_async(out)
    body = make_stream(await out.readexactly(length))
    assert (await body.readexactly(1)) == b"\x00"
    json_len = await read_varint_async(body)
    motd = json.loads(await body.readexactly(json_len))
    assert motd["players"] == {"max": 20, "online": 2}
    assert motd["version"]["protocol"] == 47
    ping_len = await read_varint_async(out)
    assert await out.readexactly(ping_len) == b"\x01" + struct.pack(">q", 2**63 - 1)


@pytest.mark.asyncio
async def test_status_echoes_ping_by_default():
    service = make_service(motd_favicon="icon")
    ping = packet(b"\x01" + struct.pack(">q", 42))
    client = make_stream(packet(handshake_body(47, "h", 25565, 1)) + packet(b"\x00") + ping)
    writer = FakeWriter()
    with pytest.raises(MotdHandled):
        await handle_connection(service, Config(), make_ctx(), client, writer, make_options())
    assert bytes(writer.data).endswith(ping)


@pytest.mark.asyncio
async def test_status_passthrough_without_custom_motd():
    service = make_service()
    handshake = packet(handshake_body(47, "h", 25565, 1))
    out = FakeOutbound()
    remote_reader, remote_writer = await handle_connection(
        service, Config(), make_ctx(), make_stream(handshake), FakeWriter(), make_options(out))
    assert remote_writer is out.writer
    assert bytes(out.writer.data) == handshake
    assert out.dialed == [("target.example.com", 25565)]


@pytest.mark.asyncio
async def test_login_rewrites_hostname_and_forwards_login_start():
    service = make_service(enable_hostname_rewrite=True, rewritten_hostname="new.example.com")
    uuid_bytes = bytes(range(16))
    login_body = b"\x00" + encode_varint(5) + b"Steve" + uuid_bytes
    client = make_stream(packet(handshake_body(763, "old.example.com", 1234, 2))
                         + packet(login_body))
    out = FakeOutbound()
    ctx = make_ctx()
    await handle_connection(service, Config(), ctx, client, FakeWriter(), make_options(out))
    expected = (packet(handshake_body(763, "new.example.com", 25565, 2))
                + encode_varint(len(login_body)) + b"\x00" + encode_varint(5) + b"Steve")
    assert bytes(out.writer.data) == expected
    assert await client.read() == uuid_bytes
    assert ctx.additional_info == ["PlayerName=Steve"]


@pytest.mark.asyncio
async def test_login_without_rewrite_keeps_hostname_and_port():
    service = make_service()
    login_body = b"\x00" + encode_varint(4) + b"Alex"
    client = make_stream(packet(handshake_body(47, "orig.example.com", 1234, 2))
                         + packet(login_body))
    out = FakeOutbound()
    await handle_connection(service, Config(), make_ctx(), client, FakeWriter(), make_options(out))
    assert bytes(out.writer.data).startswith(packet(handshake_body(47, "orig.example.com", 1234, 2)))


@pytest.mark.asyncio
async def test_bad_player_name_length():
    service = make_service()
    login_body = b"\x00" + encode_varint(17) + b"x" * 17
    client = make_stream(packet(handshake_body(47, "h", 1, 2)) + packet(login_body))
    with pytest.raises(BadPlayerName):
        await handle_connection(service, Config(), make_ctx(), client, FakeWriter(), make_options())


@pytest.mark.asyncio
async def test_player_limit_exceeded_sends_disconnect():
    service = make_service(online_count=OnlineCount(max=5, online=-1, enable_max_limit=True))
    login_body = b"\x00" + encode_varint(5) + b"Steve"
    client = make_stream(packet(handshake_body(47, "h", 1, 2)) + packet(login_body))
    writer = FakeWriter()
    out = FakeOutbound()
    with pytest.raises(PlayerLimitExceeded):
        await handle_connection(service, Config(), make_ctx(), client, writer,
                                make_options(out, online=5))
    assert writer.closed
    assert out.dialed == []
    reply = make_stream(bytes(writer.data))
    body = make_stream(await reply.readexactly(await read_varint_async(reply)))
    assert (await body.readexactly(1)) == b"\x00"
    msg = Message.from_json(await body.readexactly(await read_varint_async(body)))
    assert msg.extra[6].text == "Service online player number limitation exceeded.\n"


@pytest.mark.asyncio
async def test_blocked_player_is_kicked():
    service = make_service(name_access=Access(mode="block", list_tags=["banned"]))
    config = Config(lists={"banned": {"Steve"}})
    login_body = b"\x00" + encode_varint(5) + b"Steve"
    client = make_stream(packet(handshake_body(47, "h", 1, 2)) + packet(login_body))
    writer = FakeWriter()
    with pytest.raises(AccessRejected):
        await handle_connection(service, config, make_ctx(), client, writer, make_options())
    assert writer.closed
    assert b"You don't have permission" in bytes(writer.data)


@pytest.mark.asyncio
async def test_hostname_access_rejects():
    service = make_service(enable_hostname_access=True, hostname_access="allowed")
    client = make_stream(packet(handshake_body(47, "other.example.com", 1, 2)))
    with pytest.raises(HostnameRejected):
        await handle_connection(service, Config(), make_ctx(), client, FakeWriter(), make_options())


@pytest.mark.asyncio
async def test_dial_failure_is_wrapped():
    service = make_service()
    login_body = b"\x00" + encode_varint(5) + b"Steve"
    client = make_stream(packet(handshake_body(47, "h", 1, 2)) + packet(login_body))
    writer = FakeWriter()
    out = FakeOutbound(error=OSError("refused"))
    with pytest.raises(CauseError) as info:
        await handle_connection(service, Config(), make_ctx(), client, writer, make_options(out))
    assert str(info.value) == "failed to dial to target server: refused"
    assert writer.closed