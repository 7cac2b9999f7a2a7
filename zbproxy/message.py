"""Minecraft chat components and their JSON form."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .buffer import Buffer
from .varint import VarInt, read_varint

# Chat message positions
CHAT = 0
SYSTEM = 1
GAME_INFO = 2
SAY_COMMAND = 3
MSG_COMMAND = 4
TEAM_MSG_COMMAND = 5
EMOTE_COMMAND = 6
TELLRAW_COMMAND = 7

# Colours
BLACK = "black"
DARK_BLUE = "dark_blue"
DARK_GREEN = "dark_green"
DARK_AQUA = "dark_aqua"
DARK_RED = "dark_red"
DARK_PURPLE = "dark_purple"
GOLD = "gold"
GRAY = "gray"
DARK_GRAY = "dark_gray"
BLUE = "blue"
GREEN = "green"
AQUA = "aqua"
RED = "red"
LIGHT_PURPLE = "light_purple"
YELLOW = "yellow"
WHITE = "white"

_BOOL_KEYS = ("bold", "italic", "underlined", "strikethrough", "obfuscated")
_STR_KEYS = ("text", "font", "color", "insertion", "translate")

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _escape(text: str) -> str:
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


@dataclass
class Message:
    """A chat component: text with styling and nested components."""

    text: str = ""
    bold: bool = False
    italic: bool = False
    underlined: bool = False
    strikethrough: bool = False
    obfuscated: bool = False
    font: str = ""
    color: str = ""
    insertion: str = ""
    translate: str = ""
    with_: list[Message] = field(default_factory=list)
    extra: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object for this component.

        ``text`` is always present unless the component is a translation.
        """
        data: dict[str, Any] = {}
        if not self.translate or self.text:
            data["text"] = self.text
        for key in _BOOL_KEYS:
            if getattr(self, key):
                data[key] = True
        for key in ("font", "color", "insertion"):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.translate:
            data["translate"] = self.translate
        if self.with_:
            data["with"] = [m.to_dict() for m in self.with_]
        if self.extra:
            data["extra"] = [m.to_dict() for m in self.extra]
        return data

    def to_json(self) -> str:
        """Serialise compactly, escaping HTML-sensitive characters."""
        text = json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
        return _escape(text)

    @classmethod
    def from_obj(cls, obj: Any) -> Message:
        """Build a component from a decoded JSON string, object or array."""
        if isinstance(obj, str):
            return cls(text=obj)
        if isinstance(obj, list):
            return cls(extra=[cls.from_obj(item) for item in obj])
        if not isinstance(obj, dict):
            raise ValueError(f"unknown chat message type: {type(obj).__name__}")
        message = cls()
        for key in _STR_KEYS:
            value = obj.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"chat field {key!r} must be a string")
            setattr(message, key, value)
        for key in _BOOL_KEYS:
            value = obj.get(key)
            if value is None:
                continue
            if not isinstance(value, bool):
                raise ValueError(f"chat field {key!r} must be a boolean")
            setattr(message, key, value)
        for key, attr in (("with", "with_"), ("extra", "extra")):
            value = obj.get(key)
            if value is None:
                continue
            if not isinstance(value, list):
                raise ValueError(f"chat field {key!r} must be an array")
            setattr(message, attr, [cls.from_obj(item) for item in value])
        return message

    @classmethod
    def from_json(cls, raw: str | bytes) -> Message:
        """Parse a component given as a JSON string, object or array."""
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        raw = raw.strip()
        if not raw:
            raise EOFError("empty chat message")
        if raw[0] not in "\"{[":
            raise ValueError(f"unknown chat message type: '{raw[0]}'")
        return cls.from_obj(json.loads(raw))

    @classmethod
    def read_from(cls, buffer: Buffer) -> Message:
        """Read a length-prefixed JSON component from ``buffer``."""
        length = read_varint(buffer)
        if length < 0:
            raise ValueError(f"incorrect message length: {length}")
        return cls.from_json(buffer.peek(length))

    def write_to(self, writer: Any) -> int:
        """Write the component length-prefixed; return the JSON byte count."""
        code = self.to_json().encode("utf-8")
        VarInt(len(code)).write_to(writer)
        writer.write(code)
        return len(code)