"""Reading and writing the typed fields of Minecraft packets."""

from __future__ import annotations

import enum
import struct
from typing import Any

from .buffer import Buffer, ShortBufferError
from .message import Message
from .varint import VarInt, read_varint

BOOLEAN_TRUE = 0x01
BOOLEAN_FALSE = 0x00


def _unpack(buffer: Buffer, fmt: str) -> int:
    return struct.unpack(fmt, buffer.peek(struct.calcsize(fmt)))[0]


def read_int8(buffer: Buffer) -> int:
    value = buffer.read_byte()
    return value - 256 if value > 127 else value


def read_int16(buffer: Buffer) -> int:
    return _unpack(buffer, ">h")


def read_uint16(buffer: Buffer) -> int:
    return _unpack(buffer, ">H")


def read_int32(buffer: Buffer) -> int:
    return _unpack(buffer, ">i")


def read_uint32(buffer: Buffer) -> int:
    return _unpack(buffer, ">I")


def read_int64(buffer: Buffer) -> int:
    return _unpack(buffer, ">q")


def read_uint64(buffer: Buffer) -> int:
    return _unpack(buffer, ">Q")


def read_bool(buffer: Buffer) -> bool:
    return buffer.read_byte() == BOOLEAN_TRUE


def _read_prefixed(buffer: Buffer) -> bytes:
    n = read_varint(buffer)
    if n < 0:
        raise ShortBufferError(f"negative length prefix: {n}")
    return buffer.peek(n)


def read_string(buffer: Buffer) -> str:
    """Read a VarInt-prefixed string; undecodable bytes survive a round trip."""
    return _read_prefixed(buffer).decode("utf-8", errors="surrogateescape")


_INT_FORMATS = {
    "int16": (">H", 0xFFFF),
    "uint16": (">H", 0xFFFF),
    "int": (">I", 0xFFFFFFFF),
    "int32": (">I", 0xFFFFFFFF),
    "uint32": (">I", 0xFFFFFFFF),
    "int64": (">Q", 0xFFFFFFFFFFFFFFFF),
    "uint64": (">Q", 0xFFFFFFFFFFFFFFFF),
}


def _write_bytes(buffer: Buffer, data: bytes) -> None:
    VarInt(len(data)).write_to_buffer(buffer)
    if buffer.write(data) < len(data):
        raise ShortBufferError(f"no room for {len(data)} bytes")


class Field(enum.Enum):
    """Wire types of packet fields."""

    BOOL = "bool"
    BYTE = "byte"
    INT8 = "int8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT = "int"
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    VARINT = "varint"
    STRING = "string"
    BYTES = "bytes"
    MESSAGE = "message"

    def read(self, buffer: Buffer) -> Any:
        """Consume one value of this type from ``buffer``.

        ``INT`` is read as an unsigned 32-bit value.
        """
        if self is Field.BOOL:
            return read_bool(buffer)
        if self is Field.BYTE:
            return buffer.read_byte()
        if self is Field.INT8:
            return read_int8(buffer)
        if self is Field.VARINT:
            return VarInt(read_varint(buffer))
        if self is Field.STRING:
            return read_string(buffer)
        if self is Field.BYTES:
            return _read_prefixed(buffer)
        if self is Field.MESSAGE:
            return Message.read_from(buffer)
        return _FIXED_READERS[self](buffer)

    def write(self, buffer: Buffer, value: Any) -> None:
        """Append ``value`` to ``buffer`` in this wire type."""
        if self is Field.BOOL:
            if value:
                buffer.write_byte(BOOLEAN_TRUE)
            else:
                buffer.write_zero()
        elif self in (Field.BYTE, Field.INT8):
            buffer.write_byte(int(value) & 0xFF)
        elif self is Field.VARINT:
            VarInt(value).write_to_buffer(buffer)
        elif self is Field.STRING:
            _write_bytes(buffer, str(value).encode("utf-8", errors="surrogateescape"))
        elif self is Field.BYTES:
            _write_bytes(buffer, bytes(value))
        elif self is Field.MESSAGE:
            value.write_to(buffer)
        else:
            fmt, mask = _INT_FORMATS[self.value]
            packed = struct.pack(fmt, int(value) & mask)
            buffer.extend(len(packed))[:] = packed


_FIXED_READERS = {
    Field.INT16: read_int16,
    Field.UINT16: read_uint16,
    Field.INT: read_uint32,
    Field.INT32: read_int32,
    Field.UINT32: read_uint32,
    Field.INT64: read_int64,
    Field.UINT64: read_uint64,
}


def _field_for(value: Any) -> Field:
    if isinstance(value, bool):
        return Field.BOOL
    if isinstance(value, VarInt):
        return Field.VARINT
    if isinstance(value, int):
        return Field.INT
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Field.BYTES
    if isinstance(value, str):
        return Field.STRING
    if isinstance(value, Message):
        return Field.MESSAGE
    raise TypeError(f"cannot write packet field of type {type(value).__name__}")


def write_fields(buffer: Buffer, *args: Any) -> None:
    """Append each argument to ``buffer``.

    An argument is either a ``(Field, value)`` pair or a value whose wire type
    follows from its Python type: ``bool``, ``VarInt``, ``int`` (four bytes),
    ``bytes``, ``str`` or :class:`Message`.
    """
    for arg in args:
        if isinstance(arg, tuple) and len(arg) == 2 and isinstance(arg[0], Field):
            arg[0].write(buffer, arg[1])
        else:
            _field_for(arg).write(buffer, arg)


def scan(buffer: Buffer, *args: Field) -> tuple[Any, ...]:
    """Read one value for each field type given, in order."""
    values = []
    for arg in args:
        if not isinstance(arg, Field):
            raise TypeError(f"not a packet field type: {arg!r}")
        values.append(arg.read(buffer))
    return tuple(values)