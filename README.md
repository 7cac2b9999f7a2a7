# zbproxy

An asyncio TCP relay built for Minecraft servers. Each configured service
listens on a local port and forwards clients to a target server, optionally:

- answering server-list status requests itself with a custom MOTD, favicon,
  player count and sample list;
- rewriting the hostname in the Minecraft handshake (keeping a Forge
  `\0FML\0` suffix unless `IgnoreFMLSuffix` is set);
- allowing or blocking clients by IP address or by player name, using named
  lists;
- refusing logins once an online-player limit is reached, with a disconnect
  message;
- reading the SNI of a TLS ClientHello and routing by that domain instead of
  handling Minecraft;
- dialing the target through a SOCKS 4, 4a or 5 server;
- setting options on outgoing sockets (mark, interface, TCP Fast Open,
  congestion control, Multipath TCP) where the platform has them.

It needs nothing beyond the Python standard library.

## Running

```
zbproxy
zbproxy --config path/to/ZBProxy.json
```

By default the configuration is read from `ZBProxy.json` in the current
directory (`-c`/`--config` chooses another file). If the file does not exist,
a default one is written — a service named `HypixelDefault` forwarding port
25565 to `mc.hypixel.net:25565` with a custom MOTD — and used straight away.

While running, the proxy polls the configuration file for changes in
modification time or size. When it changes (and writes have been quiet for
a tenth of a second), or the process receives `SIGHUP`, the file is read
again. If it parses, every listener is closed and the services are started
anew from the new settings; if it does not, the error is logged and the
running services are left alone. `Ctrl+C` or `SIGTERM` closes the listeners
and exits. Connections already being relayed are not cut by a reload.

## Configuration

The file holds two keys: `Services`, a list of services, and `Lists`, a map
from list name to a list of strings (IP addresses, player names or domains)
that the access settings refer to by name. Keys are matched without regard
to case. A small example:

```json
{
    "Services": [
        {
            "Name": "Lobby",
            "TargetAddress": "mc.example.com",
            "TargetPort": 25565,
            "Listen": 25565,
            "Flow": "auto",
            "IPAccess": {
                "Mode": "block",
                "ListTags": ["banned-ips"]
            },
            "Minecraft": {
                "EnableHostnameRewrite": true,
                "OnlineCount": {
                    "Max": 100,
                    "Online": -1,
                    "EnableMaxLimit": true,
                    "Sample": ["Steve", "Alex"]
                },
                "PingMode": "",
                "MotdFavicon": "{DEFAULT_MOTD}",
                "MotdDescription": "§d{NAME}§e is running §a{INFO}§r for {HOST}:{PORT}"
            }
        }
    ],
    "Lists": {
        "banned-ips": ["192.0.2.10"]
    }
}
```

### Service keys

- `Name`, `TargetAddress`, `TargetPort`, `Listen`: the service's name, where
  it forwards to, and the local port it listens on (all interfaces).
- `Flow`: `auto` (or empty), `origin`, `multiple`, `zerocopy` or
  `linux-zerocopy`. All of them copy data with asyncio streams; `multiple`,
  and `auto` outside Linux, grow and shrink the read size with the traffic,
  the others read 32 KiB at a time. `zerocopy` and `linux-zerocopy` only work
  on Linux-based systems; elsewhere relaying a connection fails. Any other
  value stops the service from starting.
- `IPAccess.Mode`: empty (no check), `allow` or `block`; `ListTags` names the
  lists the client IP is looked up in. Refused clients are closed with a
  reset.
- `Minecraft.RewrittenHostname`: the hostname sent to the target when
  `EnableHostnameRewrite` is on; defaults to `TargetAddress`. The rewritten
  handshake also carries `TargetPort`.
- `Minecraft.EnableHostnameAccess` / `HostnameAccess`: when on, clients whose
  handshake hostname does not contain this text are dropped.
- `Minecraft.NameAccess`: like `IPAccess`, matched against the player name at
  login; refused players get a disconnect message.
- `Minecraft.OnlineCount`: `Max` is shown in the server list; a negative
  `Online` shows the number of connections the service is relaying.
  `Sample` is either a list of names (identifiers are generated) or a map
  from identifier to name. With `EnableMaxLimit`, logins at or beyond `Max`
  are refused with a message.
- `Minecraft.PingMode`: empty to answer pings by echoing them, `0ms` to
  answer without waiting for the ping, `disconnect` to close without
  answering.
- `Minecraft.MotdFavicon` / `MotdDescription`: leaving both empty passes the
  status request through to the target. `{DEFAULT_MOTD}` as the favicon
  selects the built-in icon; `{NAME}`, `{INFO}`, `{HOST}` and `{PORT}` are
  replaced in the description.
- `Minecraft.EnableAnyDest`: only turns Minecraft handling on.
- `TLSSniffing`: `SNIAllowListTags` names lists of domains; a ClientHello
  whose server name is in one of them is sent to that domain on
  `TargetPort`, anything else to `TargetAddress`. `RejectNonTLS` and
  `RejectIfNonMatch` drop connections instead. A ClientHello without a server
  name is dropped. TLS sniffing and Minecraft handling cannot be enabled on
  the same service.
- `SocketOptions`: `Mark`, `Interface`, `TCPFastOpen`, `TCPCongestion`,
  `MultiPathTCP`, applied to connections to the target.
- `Outbound`: a `Type` of `socks`, `socks5`, `socks4a` or `socks4`, with the
  SOCKS server's `Address` as `host:port`, routes target connections through
  that server.

## Library use

The pieces can be used on their own:

- `zbproxy.varint`: `encode_varint`, `read_varint`, `varint_len` and the
  `VarInt` integer type.
- `zbproxy.packet`: `write_fields` and `scan` with `Field` wire types for
  Minecraft packet fields; `zbproxy.conn.PacketConn` frames whole packets
  over asyncio streams.
- `zbproxy.message.Message`: chat components to and from JSON.
- `zbproxy.tls_sniff`: `sniff_tls` and `read_client_hello` return the server
  name of a ClientHello; `sniff_and_record_tls` reads one from a stream.
- `zbproxy.socks.SocksClient`: SOCKS 4/4a/5 handshakes over asyncio streams,
  built directly or with `SocksClient.from_url`.
- `zbproxy.config`: `Config.from_json`, `Config.to_json`, `load_config`,
  `reload_config` and `generate_default_config`.
- `zbproxy.service.ProxyServer`: `start`, `stop` and `restart` the services
  of a `Config`.
- `zbproxy.transfer.relay`: copy both ways between two stream pairs.

## Limitations

- SOCKS 5 username/password and GSSAPI authentication are not supported;
  only servers that need no authentication can be used.
- Socket options apply to outgoing connections only, not to listeners.
- Status requests and TLS routing go to `TargetAddress`/`TargetPort` or an
  allowed SNI domain; there is no other routing.