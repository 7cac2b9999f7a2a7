"""Proxy configuration: the services to run and the named lists they use."""

from __future__ import annotations

import enum
import json
import logging
import random
import re
import threading
import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

from .console import VERSION

logger = logging.getLogger(__name__)

CONFIG_FILE = "ZBProxy.json"
DEFAULT_MOTD_PLACEHOLDER = "{DEFAULT_MOTD}"

DEFAULT_MOTD = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAEAAAABACAMAAACdt4HsAAAAAXNSR0IB2cksfwAAAAlwSFlzAAALEwAACxMBAJqcGAAAAeZQTFRF"
    "/+IAzrcHKyodHx8fR0IZ89cC2MAFKikdw64IIyMeXFQX/eAAxa8IIiIfrpwLISAfgHQRnYwOuKQKaF4VJyYecGUUj4AQ99sB"
    "UUsYMS4d38YE+98AWVEXrJkM7dMCQDsaPzsb9NgCTkgYuqYJ3sYEUEoYODQcJiUe0LkHW1MX+94B178GMC4dcmgTwq0I5s0D"
    "pJINoZAN69shjLi/i7i/ZZfEU4fHVIfHeqnB0NFOZqr/f7PWY1sVtcd7n7+g+NwBm76nv8tq7tMCRkEagLPU4Nc06M4DPjob"
    "4McE49cvgLTUxMxjnL6lpMCYi6B7s8d/ssZ/a4iJQmWPZaj7NUdcXnNvYJ7sMkVcu8pxW5XdLjtMNjMcssaBVovNKTI9qMOR"
    "UYG+JCgtnr6hTHiu+N8MlbuxR26f7twci7fBQ2SPfXES5dgsgbTRPVuA29U8ebLgxMxdiHoQ0tFLb63w0dFMOFFverHe3NU6"
    "PVl9hLTN5tkpQWKLj7m78d0XRWqZmb2q++EGSnOnICIkTny0rsSHqpgMJSoxUoTCuch1KTNAV43QZHlxSXKkcY6IdrDl+N4E"
    "Zqn8lLuy2tQ+t8h40tJMmLyr8N0ZtqIKerHdd7DjloYPkbq3dGkT59ooq8OMxM1ixs1gzbYH1nu7OAAAA1JJREFUeJyFl/df"
    "E0EQxZesRkPU0CIlGCACIiAWrBhFQQELotjF3sGK2HvD3huK2P5TL7nL7bwZPnvvR/bNl83eu5k9pajyQpppylQwhKdxg0JN"
    "j3BDfhQMM2baAWpWjBMK7AYOUIUcoAutBgFQBRwQK7IZJEAVc0JJHqxH4wCYLQClZZxQXgGGRCUF6DmCkKzihOokGGpSFBCb"
    "Kwi15ZxQh3FI1hOAntcgCHklnDC/EQxNIQLQzWFBKBJxWICGlggB6PqFgiDjwE57EQXwxGck4qAXT2pwATzxS1pbly5bzrRi"
    "Zasn1xSnAJb4VW02rXZNiTQFYOLXWAFrPVd7igIg8eusgPU5W0cnAUDiN1gBG31fVzcB0MRb69vIVnuaCcAkfpO1fjM9rQYK"
    "8BO/xQrYinmArHiJ77UCtlkAXuL7iLbv6O+H+p27WiwAnnhHid1Qv2evDtVaADzxSu2D+v0HHM9AjwXA+8tBqD90OGvq7jCG"
    "Ok7A/nIE6o8e80ypGt+RrOYE2l+OQ/0JY6pM+J4K0QAHurylk6eg/jQ1pU0DkAOz0/2JZ85C/SCahsw+xcDUqXbnz+fOQ/0F"
    "biJPXE7U4qi6eAnqL6e5hz5x2UKHr4zQ8pGrbvsARUgkRQu9Bv/++g3ltg9UqMkH4MDU+ibU37qdNTntg6nejDwYmPoO1N+9"
    "55l6mjmhrNQn0IF5H+ofPPRNDeKJV5pjMAPzEdT30mTLJ04WvYH5+AnUP1WgUQvAHZjPnkP9C8U0bAFkBubLV1D/OsoB0WIL"
    "wInDG6gf7H/bx8RvQIwfxw1IveOBYoD3HwIAHx1T1wAF4I/8FFDf1pdxhUmg1DAAPgcBvmRtJFBKj1LA1yDAN9c3FjMA+lKq"
    "7wH1P3LGcQOAORG0gZ++c8IAyJz4FQT47QMa8w3AzIk/QYC/ZrPe6+tOJjInXPHEaz2uuDq6DYDOiax44h2NCUK2v+RmY5q9"
    "NfLOX/JPEDJx8IfrEFuULbS8VhCc/mKmM78ZQOKzqpIX4ln0lsZvBmHRQrMDCzVOAJEWtihbKD+pjMgymROuxsTI4yeFADon"
    "vA1ywCR3KFgmc8LVhCCIOxQu80DlEm8kvtHYepwdU42Yyfwbja+zb20v8VT4jfYfTXskk4+wbR0AAAAASUVORK5CYII="
)

_load_lock = threading.Lock()


class ConfigError(ValueError):
    """Raised when configuration cannot be read, parsed or used."""


class AccessMode(str, enum.Enum):
    """How a list of tags controls access."""

    DEFAULT = ""
    ALLOW = "allow"
    BLOCK = "block"


_INT_RANGES = {
    "int": (-(2**63), 2**63 - 1),
    "int32": (-(2**31), 2**31 - 1),
    "uint16": (0, 65535),
}


def _key(name: str, kind: Any, default: Any = None, *, omitempty: bool = False,
         factory: Any = None) -> Any:
    metadata = {"key": name, "kind": kind, "omitempty": omitempty}
    if factory is not None:
        return field(default_factory=factory, metadata=metadata)
    return field(default=default, metadata=metadata)


def _lookup(data: dict[str, Any], key: str) -> Any:
    """Find ``key`` exactly, or else ignoring case."""
    if key in data:
        return data[key]
    folded = key.casefold()
    for actual, value in data.items():
        if isinstance(actual, str) and actual.casefold() == folded:
            return value
    return None


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _decode_value(kind: Any, value: Any, where: str) -> Any:
    if isinstance(kind, type):
        return _decode(kind, value, where)
    if kind == "str":
        if not isinstance(value, str):
            raise ConfigError(f"{where}: cannot use {_json_type(value)} as string")
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise ConfigError(f"{where}: cannot use {_json_type(value)} as bool")
        return value
    if kind in _INT_RANGES:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{where}: cannot use {value!r} as {kind}")
        low, high = _INT_RANGES[kind]
        if not low <= value <= high:
            raise ConfigError(f"{where}: number {value} overflows {kind}")
        return value
    if kind == "strlist":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{where}: expected an array of strings")
        return list(value)
    return value


def _decode(cls: type, data: Any, where: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected an object, got {_json_type(data)}")
    kwargs = {}
    for f in fields(cls):
        key = f.metadata["key"]
        value = _lookup(data, key)
        if value is None:
            continue
        kwargs[f.name] = _decode_value(f.metadata["kind"], value, f"{where}.{key}")
    return cls(**kwargs)


def _encode_any(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return _encode(value)
    if isinstance(value, (list, tuple)):
        return [_encode_any(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode_any(v) for k, v in value.items()}
    return value


def _is_empty(kind: Any, value: Any) -> bool:
    if value is None:
        return True
    if kind == "any":
        return False
    return value is False or value == 0 or value == "" or value == []


def _encode(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(obj):
        key, kind, omitempty = f.metadata["key"], f.metadata["kind"], f.metadata["omitempty"]
        value = getattr(obj, f.name)
        if isinstance(kind, type):
            # Nested structures are always written; only absent ones are omitted.
            if value is None:
                if not omitempty:
                    out[key] = None
                continue
            out[key] = _encode(value)
            continue
        if omitempty and _is_empty(kind, value):
            continue
        if kind == "any":
            out[key] = _encode_any(value)
        elif kind == "strlist":
            out[key] = None if value is None else list(value)
        else:
            out[key] = value.value if isinstance(value, enum.Enum) else value
    return out


@dataclass
class Access:
    """Access control by membership of named lists."""

    mode: str = _key("Mode", "str", "")
    list_tags: list[str] | None = _key("ListTags", "strlist", None, omitempty=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Access:
        return _decode(cls, data, "access")

    def to_dict(self) -> dict[str, Any]:
        return _encode(self)


@dataclass
class Sample:
    """A player entry shown in the server list."""

    name: str = _key("name", "str", "")
    id: str = _key("id", "str", "")


@dataclass
class OnlineCount:
    max: int = _key("Max", "int", 0)
    online: int = _key("Online", "int32", 0)
    enable_max_limit: bool = _key("EnableMaxLimit", "bool", False)
    sample: Any = _key("Sample", "any", None, omitempty=True)


@dataclass
class AnyDest:
    wildcard_root_domain_name: str = _key("WildcardRootDomainName", "str", "", omitempty=True)


@dataclass
class MinecraftOptions:
    enable_hostname_rewrite: bool = _key("EnableHostnameRewrite", "bool", False)
    rewritten_hostname: str = _key("RewrittenHostname", "str", "", omitempty=True)
    enable_hostname_access: bool = _key("EnableHostnameAccess", "bool", False)
    hostname_access: str = _key("HostnameAccess", "str", "", omitempty=True)
    online_count: OnlineCount = _key("OnlineCount", OnlineCount, factory=OnlineCount)
    ignore_fml_suffix: bool = _key("IgnoreFMLSuffix", "bool", False, omitempty=True)
    name_access: Access = _key("NameAccess", Access, factory=Access, omitempty=True)
    enable_any_dest: bool = _key("EnableAnyDest", "bool", False, omitempty=True)
    any_dest_settings: AnyDest = _key("AnyDestSettings", AnyDest, factory=AnyDest, omitempty=True)
    ping_mode: str = _key("PingMode", "str", "")
    motd_favicon: str = _key("MotdFavicon", "str", "")
    motd_description: str = _key("MotdDescription", "str", "")


@dataclass
class TLSSniffing:
    reject_non_tls: bool = _key("RejectNonTLS", "bool", False)
    reject_if_non_match: bool = _key("RejectIfNonMatch", "bool", False, omitempty=True)
    sni_allow_list_tags: list[str] | None = _key("SNIAllowListTags", "strlist", None, omitempty=True)


@dataclass
class SocketOptions:
    """Options applied to outgoing sockets."""

    mark: int = _key("Mark", "int", 0, omitempty=True)
    interface: str = _key("Interface", "str", "", omitempty=True)
    tcp_fast_open: bool = _key("TCPFastOpen", "bool", False, omitempty=True)
    tcp_congestion: str = _key("TCPCongestion", "str", "", omitempty=True)
    multi_path_tcp: bool = _key("MultiPathTCP", "bool", False, omitempty=True)


@dataclass
class OutboundOptions:
    type: str = _key("Type", "str", "")
    network: str = _key("Network", "str", "", omitempty=True)
    address: str = _key("Address", "str", "", omitempty=True)


@dataclass
class ProxyService:
    """One listening port and the target it forwards to."""

    name: str = _key("Name", "str", "")
    target_address: str = _key("TargetAddress", "str", "")
    target_port: int = _key("TargetPort", "uint16", 0)
    listen: int = _key("Listen", "uint16", 0)
    flow: str = _key("Flow", "str", "")
    ip_access: Access = _key("IPAccess", Access, factory=Access, omitempty=True)
    minecraft: MinecraftOptions = _key("Minecraft", MinecraftOptions,
                                       factory=MinecraftOptions, omitempty=True)
    tls_sniffing: TLSSniffing = _key("TLSSniffing", TLSSniffing, factory=TLSSniffing, omitempty=True)
    socket_options: SocketOptions | None = _key("SocketOptions", SocketOptions, None, omitempty=True)
    outbound: OutboundOptions = _key("Outbound", OutboundOptions,
                                     factory=OutboundOptions, omitempty=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProxyService:
        return _decode(cls, data, "service")

    def to_dict(self) -> dict[str, Any]:
        return _encode(self)


_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026",
                 "\u2028": "\\u2028", "\u2029": "\\u2029"}


@dataclass
class Config:
    """All services plus the named string lists used for access control."""

    services: list[ProxyService] = field(default_factory=list)
    lists: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        if not isinstance(data, dict):
            raise ConfigError(f"config: expected an object, got {_json_type(data)}")
        services_raw = _lookup(data, "Services")
        services = []
        if services_raw is not None:
            if not isinstance(services_raw, list):
                raise ConfigError("Services: expected an array")
            for index, item in enumerate(services_raw):
                if item is None:
                    raise ConfigError(f"Services[{index}]: service is null")
                services.append(_decode(ProxyService, item, f"Services[{index}]"))
        lists_raw = _lookup(data, "Lists")
        lists: dict[str, set[str]] = {}
        if lists_raw is not None:
            if not isinstance(lists_raw, dict):
                raise ConfigError("Lists: expected an object")
            for name, items in lists_raw.items():
                values = [] if items is None else _decode_value("strlist", items, f"Lists.{name}")
                lists[name] = set(values)
        return cls(services=services, lists=lists)

    def to_dict(self) -> dict[str, Any]:
        return {
            "Services": [s.to_dict() for s in self.services],
            "Lists": {k: sorted(v) for k, v in self.lists.items()} if self.lists else None,
        }

    @classmethod
    def from_json(cls, text: str | bytes) -> Config:
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ConfigError(str(exc)) from exc
        return cls.from_dict(data)

    def to_json(self) -> str:
        """Serialise with four-space indentation, escaping HTML-sensitive characters."""
        text = json.dumps(self.to_dict(), indent=4, ensure_ascii=False)
        for char, escaped in _HTML_ESCAPES.items():
            text = text.replace(char, escaped)
        return text

    def get_list(self, name: str) -> set[str]:
        """Return the named list or raise :class:`ConfigError`."""
        try:
            return self.lists[name]
        except KeyError:
            raise ConfigError(f"list {json.dumps(name, ensure_ascii=False)} not found") from None


def make_sample_id(index: int, rng: random.Random | None = None) -> str:
    """Make a random UUID string whose first bytes mark it as generated here."""
    raw = bytearray((rng or random).randbytes(16))
    raw[0] = index & 0xFF
    raw[1:5] = b"$ZB$"
    return str(uuid.UUID(bytes=bytes(raw)))


_PLACEHOLDERS = re.compile(r"\{INFO\}|\{NAME\}|\{HOST\}|\{PORT\}")


def _convert_samples(samples: Any) -> list[Sample]:
    converted: list[Sample] = []
    if isinstance(samples, dict):
        for sample_id, name in samples.items():
            if not isinstance(name, str):
                raise ConfigError(f"sample name for {sample_id!r} must be a string")
            converted.append(Sample(name=name, id=sample_id))
    elif isinstance(samples, list):
        for index, item in enumerate(samples):
            if isinstance(item, Sample):
                converted.append(item)
            elif isinstance(item, str):
                converted.append(Sample(name=item, id=make_sample_id(index)))
            else:
                raise ConfigError(f"sample #{index} must be a string")
    else:
        raise ConfigError(
            f"Failed to reload samples: unknown samples input type: {type(samples).__name__}"
        )
    return converted


def finalize_services(config: Config) -> Config:
    """Expand favicon and description placeholders and normalise samples."""
    for service in config.services:
        mc = service.minecraft
        if mc.motd_favicon == DEFAULT_MOTD_PLACEHOLDER:
            mc.motd_favicon = DEFAULT_MOTD
        values = {
            "{INFO}": f"ZBProxy {VERSION}",
            "{NAME}": service.name,
            "{HOST}": service.target_address,
            "{PORT}": str(service.target_port),
        }
        mc.motd_description = _PLACEHOLDERS.sub(lambda m: values[m.group()], mc.motd_description)
        if mc.online_count.sample is not None:
            mc.online_count.sample = _convert_samples(mc.online_count.sample)
    return config


def default_config() -> Config:
    """The configuration written when no file exists."""
    return Config(
        services=[
            ProxyService(
                name="HypixelDefault",
                target_address="mc.hypixel.net",
                target_port=25565,
                listen=25565,
                flow="auto",
                minecraft=MinecraftOptions(
                    enable_hostname_rewrite=True,
                    online_count=OnlineCount(max=114514, online=-1, enable_max_limit=False),
                    motd_favicon=DEFAULT_MOTD_PLACEHOLDER,
                    motd_description=(
                        "§d{NAME}§e service is working on §a§o{INFO}§r\n"
                        "§c§lProxy for §6§n{HOST}:{PORT}§r"
                    ),
                ),
            )
        ],
        lists={},
    )


def generate_default_config(path: str | Path = CONFIG_FILE) -> Config:
    """Write the default configuration to ``path`` and return it."""
    config = default_config()
    text = config.to_json().replace("\n", "\r\n")
    try:
        Path(path).write_bytes(text.encode("utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to save configuration file: {exc}") from exc
    return config


def _parse(data: bytes, prefix: str) -> Config:
    try:
        return Config.from_json(data)
    except ConfigError as exc:
        raise ConfigError(f"{prefix}{exc}") from exc


def load_config(path: str | Path = CONFIG_FILE) -> Config:
    """Load the configuration, creating a default file if there is none."""
    path = Path(path)
    with _load_lock:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            logger.info("Configuration file is not exists. Generating a new one...")
            config = generate_default_config(path)
        except OSError as exc:
            raise ConfigError(f"Unexpected error when loading config: {exc}") from exc
        else:
            config = _parse(data, "Config format error: ")
        finalize_services(config)
    logger.info("Successfully loaded config from file.")
    return config


def reload_config(path: str | Path = CONFIG_FILE) -> Config:
    """Read the configuration again; the file must exist and be valid."""
    path = Path(path)
    with _load_lock:
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise ConfigError("Fail to reload : Configuration file is not exists.") from exc
        except OSError as exc:
            raise ConfigError(f"Unexpected error when reloading config: {exc}") from exc
        config = _parse(data, "Fail to reload : Config format error: ")
        finalize_services(config)
    return config